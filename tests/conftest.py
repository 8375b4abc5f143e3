from __future__ import annotations

from io import BytesIO
from typing import Callable
from xml.sax.saxutils import escape
import zipfile

import pytest

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""


def _xhtml(title: str, body: str) -> str:
    return f"""<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml">
<head><title>{escape(title)}</title></head>
<body>
{body}
</body>
</html>
"""


def _chapter_body(number: int) -> str:
    paragraphs = "\n".join(
        f"<p>Paragraph {paragraph} of chapter {number} tells a short part of the story. "
        f"It has two sentences to keep the text realistic.</p>"
        for paragraph in range(1, 4)
    )
    return f'<section id="ch{number}">\n<h1>Chapter {number}</h1>\n{paragraphs}\n</section>'


def _opf(chapters: list[tuple[str, str]], *, title: str | None, author: str | None, language: str | None) -> str:
    metadata = []
    if title:
        metadata.append(f"<dc:title>{escape(title)}</dc:title>")
    if author:
        metadata.append(f"<dc:creator>{escape(author)}</dc:creator>")
    if language:
        metadata.append(f"<dc:language>{escape(language)}</dc:language>")
    metadata.append('<dc:identifier id="bookid">urn:uuid:1234</dc:identifier>')
    manifest = "\n".join(
        f'<item id="ch{index}" href="text/{name}" media-type="application/xhtml+xml"/>'
        for index, (name, _body) in enumerate(chapters, start=1)
    )
    spine = "\n".join(f'<itemref idref="ch{index}"/>' for index in range(1, len(chapters) + 1))
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="2.0" unique-identifier="bookid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    {"".join(metadata)}
  </metadata>
  <manifest>
    <item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>
    {manifest}
  </manifest>
  <spine toc="ncx">
    {spine}
  </spine>
</package>
"""


def _ncx(chapters: list[tuple[str, str]]) -> str:
    points = "\n".join(
        f"""<navPoint id="np{index}" playOrder="{index}">
  <navLabel><text>Chapter {index}</text></navLabel>
  <content src="text/{name}"/>
</navPoint>"""
        for index, (name, _body) in enumerate(chapters, start=1)
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <head><meta name="dtb:uid" content="urn:uuid:1234"/></head>
  <docTitle><text>Sample</text></docTitle>
  <navMap>
{points}
  </navMap>
</ncx>
"""


EpubFactory = Callable[..., bytes]


@pytest.fixture
def make_epub() -> EpubFactory:
    """Build EPUB2 payloads in memory; every part can be replaced or dropped."""

    def _make(
        chapters: list[tuple[str, str]] | None = None,
        *,
        chapter_count: int = 5,
        title: str | None = "Sample Book",
        author: str | None = "Jane Doe",
        language: str | None = "en",
        container: str | None = CONTAINER_XML,
        opf: str | None = None,
        ncx: str | None = None,
        include_ncx: bool = True,
        mimetype: bytes | None = b"application/epub+zip",
        extra: dict[str, bytes] | None = None,
    ) -> bytes:
        if chapters is None:
            chapters = [(f"chapter{number}.xhtml", _chapter_body(number)) for number in range(1, chapter_count + 1)]

        buffer = BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            if mimetype is not None:
                archive.writestr("mimetype", mimetype, compress_type=zipfile.ZIP_STORED)
            if container is not None:
                archive.writestr("META-INF/container.xml", container, compress_type=zipfile.ZIP_DEFLATED)
            archive.writestr(
                "OEBPS/content.opf",
                opf if opf is not None else _opf(chapters, title=title, author=author, language=language),
                compress_type=zipfile.ZIP_DEFLATED,
            )
            if include_ncx:
                archive.writestr("OEBPS/toc.ncx", ncx if ncx is not None else _ncx(chapters), compress_type=zipfile.ZIP_DEFLATED)
            for index, (name, body) in enumerate(chapters, start=1):
                archive.writestr(f"OEBPS/text/{name}", _xhtml(f"Part {index}", body), compress_type=zipfile.ZIP_DEFLATED)
            for name, payload in (extra or {}).items():
                archive.writestr(name, payload, compress_type=zipfile.ZIP_DEFLATED)
        return buffer.getvalue()

    return _make


@pytest.fixture
def sample_epub(make_epub: EpubFactory) -> bytes:
    return make_epub()
