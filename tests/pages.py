"""HTML builders mimicking Royal Road and Scribble Hub markup."""
import json

RR_BASE = "https://www.royalroad.com"
RR_FICTION_URL = f"{RR_BASE}/fiction/12345/test-story"

SH_BASE = "https://www.scribblehub.com"
SH_SERIES_URL = f"{SH_BASE}/series/862913/test-series/"


def rr_chapter_json(n, unlocked=True, order=None):
    return {
        "id": 1000 + n,
        "title": f"Chapter {n}",
        "url": f"/fiction/12345/test-story/chapter/{1000 + n}/chapter-{n}",
        "order": n - 1 if order is None else order,
        "isUnlocked": unlocked,
    }


def rr_chapter_url(n):
    return f"{RR_BASE}/fiction/12345/test-story/chapter/{1000 + n}/chapter-{n}"


def rr_fiction_page(chapters, title="Test Story", author="Test Author", json_ld=True, cover=None):
    ld = ""
    if json_ld:
        data = {
            "@context": "https://schema.org",
            "@type": "Book",
            "name": title,
            "author": {"@type": "Person", "name": author},
            "description": "<p>A <b>gripping</b> tale.</p>",
        }
        if cover:
            data["image"] = cover
        ld = f'<script type="application/ld+json">{json.dumps(data)}</script>'
    og_image = f'<meta property="og:image" content="{cover}"/>' if cover else ""
    return f"""<html><head><title>{title} | Royal Road</title>{ld}{og_image}</head>
<body>
<div class="fic-header"><h1 class="font-white">{title}</h1>
<h4><span>by</span> <a class="font-white" href="/profile/1">{author}</a></h4></div>
<div class="description"><div class="hidden-content"><p>DOM description.</p></div></div>
<table id="chapters"><tr><td><a href="/ignored">Visible table row</a></td></tr></table>
<script>
    window.fictionId = 12345;
    window.chapters = {json.dumps(chapters)};
    window.volumes = [];
</script>
</body></html>"""


def rr_chapter_page(title, paragraphs, extra="", hidden_class=None):
    style = ""
    if hidden_class:
        style = f"<style>.{hidden_class}{{display: none; speak: never;}}</style>"
        extra += f'<p class="{hidden_class}">Stolen from Royal Road.</p>'
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    return f"""<html><head><title>{title} - Test Story | Royal Road</title>
<meta property="og:title" content="{title}"/>{style}</head>
<body>
<div class="chapter-content-wrapper">
<h1 class="font-white break-word">{title}</h1>
<div class="chapter-inner chapter-content">{body}{extra}
<div class="author-note"><p>Author note paragraph.</p></div>
</div>
</div>
</body></html>"""


def sh_chapter_url(n):
    return f"{SH_BASE}/read/862913-test-series/chapter/{2000 + n}/"


def sh_toc_page(numbers, next_href=None, page_links=(), title="Test Series", author="SH Author"):
    items = "".join(
        f'<li class="toc_w" order="{n}"><a class="toc_a" href="{sh_chapter_url(n)}">Chapter {n}</a>'
        f'<span class="fic_date_pub">1 day ago</span></li>'
        for n in numbers
    )
    links = "".join(f'<a class="page-link" href="{href}">{label}</a>' for label, href in page_links)
    if next_href is not None:
        links += f'<a class="page-link next" href="{next_href}">Next</a>'
    return f"""<html><head><title>{title} | Scribble Hub</title>
<meta property="og:title" content="{title}"/>
<meta property="og:image" content="https://cdn.scribblehub.com/images/cover.jpg"/></head>
<body>
<div class="fic_title" title="{title}">{title}</div>
<div class="sb_content author"><div property="author"><a href="/profile/1/"><span class="auth_name_fic">{author}</span></a></div></div>
<div class="wi_fic_desc"><p>Series description.</p></div>
<div class="wi_fic_table toc"><ol class="toc_ol">{items}</ol>
<div id="pagination-mesh-toc">{links}</div></div>
</body></html>"""


def sh_chapter_page(title, paragraphs, with_container=True):
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    container = f'<div id="chp_raw" class="chp_raw">{body}<div class="wi_authornotes"><p>Note.</p></div></div>' if with_container else ""
    return f"""<html><head><title>{title} | Scribble Hub</title></head>
<body>
<div class="chapter-title">{title}</div>
<div id="chp_contents">{container}</div>
<div class="wi_authornotes_body"><p>Outside author note.</p></div>
</body></html>"""
