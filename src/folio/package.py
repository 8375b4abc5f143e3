"""Container descriptor, OPF package document and navigation parsing."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import posixpath
from urllib.parse import unquote, urldefrag

from lxml import etree

from folio.archive import Archive, ArchiveError
from folio.normalization import normalize_whitespace

logger = logging.getLogger(__name__)

CONTAINER_PATH = "META-INF/container.xml"
OPF_MEDIA_TYPE = "application/oebps-package+xml"
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"
HTML_MEDIA_TYPES = frozenset({"application/xhtml+xml", "text/html", "application/html", "text/x-oeb1-document"})


def is_html_media_type(media_type: str | None) -> bool:
    if not media_type:
        return False
    lowered = media_type.split(";", 1)[0].strip().lower()
    return lowered in HTML_MEDIA_TYPES or "html" in lowered


@dataclass(slots=True)
class PackageError(Exception):
    """Raised when the package descriptor cannot be located or parsed."""

    message: str
    path: str | None = None

    def __str__(self) -> str:
        if self.path:
            return f"{self.message} (path={self.path})"
        return self.message


@dataclass(frozen=True, slots=True)
class ManifestItem:
    item_id: str
    href: str
    media_type: str
    properties: frozenset[str] = frozenset()

    @property
    def is_html(self) -> bool:
        return is_html_media_type(self.media_type)

    @property
    def is_nav(self) -> bool:
        return "nav" in self.properties


@dataclass(frozen=True, slots=True)
class SpineItem:
    idref: str
    linear: bool = True


@dataclass(slots=True)
class NavPoint:
    """One entry of the authored table of contents; ``href`` is archive-absolute."""

    label: str
    href: str | None
    level: int
    children: list["NavPoint"] = field(default_factory=list)

    def flatten(self) -> list["NavPoint"]:
        flat = [self]
        for child in self.children:
            flat.extend(child.flatten())
        return flat


@dataclass(slots=True)
class Navigation:
    kind: str
    source_path: str
    points: list[NavPoint] = field(default_factory=list)

    def flatten(self) -> list[NavPoint]:
        flat: list[NavPoint] = []
        for point in self.points:
            flat.extend(point.flatten())
        return flat


@dataclass(slots=True)
class PackageMetadata:
    title: str | None = None
    author: str | None = None
    language: str | None = None
    publisher: str | None = None
    identifier: str | None = None
    description: str | None = None


@dataclass(slots=True)
class PackageDocument:
    """Structural view of the book: metadata, manifest, spine, navigation."""

    opf_path: str
    version: str | None
    metadata: PackageMetadata
    manifest: list[ManifestItem]
    spine: list[SpineItem]
    toc_id: str | None = None
    navigation: Navigation | None = None
    issues: list[str] = field(default_factory=list)

    def item_by_id(self, item_id: str) -> ManifestItem | None:
        for item in self.manifest:
            if item.item_id == item_id:
                return item
        return None

    @property
    def html_items(self) -> list[ManifestItem]:
        return [item for item in self.manifest if item.is_html]

    @property
    def epub_version(self) -> str:
        if self.navigation is not None and self.navigation.kind == "nav":
            return "3.0"
        if self.version:
            return self.version
        return "2.0"


def _xml_parser(*, recover: bool = False) -> etree.XMLParser:
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        load_dtd=False,
        huge_tree=False,
        recover=recover,
    )


def parse_xml(raw: bytes, *, recover: bool = False) -> etree._Element:
    """Parse XML bytes safely; raises ``etree.XMLSyntaxError`` on malformed input."""

    root = etree.fromstring(raw, parser=_xml_parser(recover=recover))
    if root is None:
        raise etree.XMLSyntaxError("document is empty", None, 0, 0)
    return root


def resolve_href(base_dir: str, href: str) -> str:
    """Resolve a relative href against a directory inside the archive, keeping any fragment."""

    target, fragment = urldefrag(href.strip())
    target = unquote(target)
    if target:
        joined = posixpath.normpath(posixpath.join(base_dir, target)) if base_dir else posixpath.normpath(target)
        joined = joined.lstrip("/")
        if joined == ".":
            joined = ""
    else:
        joined = ""
    return f"{joined}#{fragment}" if fragment else joined


def _first_text(nodes: list[object]) -> str | None:
    for node in nodes:
        if hasattr(node, "itertext"):
            text = normalize_whitespace(" ".join(node.itertext()))
        else:
            text = normalize_whitespace(str(node))
        if text:
            return text
    return None


def find_opf_path(archive: Archive) -> tuple[str, list[str]]:
    """Locate the OPF via the container descriptor, guessing from member names if needed."""

    issues: list[str] = []
    if archive.find(CONTAINER_PATH) is not None:
        try:
            root = parse_xml(archive.read(CONTAINER_PATH))
            rootfiles = root.xpath("//*[local-name()='rootfile']")
            preferred = [node for node in rootfiles if node.get("media-type") == OPF_MEDIA_TYPE] or rootfiles
            for node in preferred:
                full_path = (node.get("full-path") or "").strip()
                if full_path and archive.find(full_path) is not None:
                    return archive.find(full_path) or full_path, issues
            issues.append("container.xml names no readable rootfile")
        except (etree.XMLSyntaxError, ArchiveError) as exc:
            issues.append(f"container.xml is malformed: {exc}")
    else:
        issues.append("container.xml is missing")

    guesses = sorted(name for name in archive.names() if name.lower().endswith(".opf"))
    if guesses:
        logger.info("Guessed package document path %s", guesses[0])
        return guesses[0], issues
    raise PackageError("No package document could be located", path=CONTAINER_PATH)


def _parse_metadata(root: etree._Element) -> PackageMetadata:
    def _dc(name: str) -> str | None:
        return _first_text(root.xpath(f"//*[local-name()='metadata']/*[local-name()='{name}']"))

    return PackageMetadata(
        title=_dc("title"),
        author=_dc("creator"),
        language=_dc("language"),
        publisher=_dc("publisher"),
        identifier=_dc("identifier"),
        description=_dc("description"),
    )


def _parse_manifest(root: etree._Element, base_dir: str) -> list[ManifestItem]:
    items: list[ManifestItem] = []
    for node in root.xpath("//*[local-name()='manifest']/*[local-name()='item']"):
        item_id = node.get("id")
        href = node.get("href")
        media_type = node.get("media-type")
        if not item_id or not href or not media_type:
            continue
        properties = frozenset((node.get("properties") or "").split())
        items.append(
            ManifestItem(
                item_id=item_id,
                href=resolve_href(base_dir, href),
                media_type=media_type.strip().lower(),
                properties=properties,
            )
        )
    return items


def _parse_spine(root: etree._Element) -> tuple[list[SpineItem], str | None]:
    spines = root.xpath("//*[local-name()='spine']")
    if not spines:
        return [], None
    spine = spines[0]
    items: list[SpineItem] = []
    for node in spine.xpath("./*[local-name()='itemref']"):
        idref = node.get("idref")
        if not idref:
            continue
        linear = (node.get("linear") or "yes").strip().lower() != "no"
        items.append(SpineItem(idref=idref, linear=linear))
    return items, spine.get("toc")


def _parse_nav_list(ol: etree._Element, base_dir: str, level: int) -> list[NavPoint]:
    points: list[NavPoint] = []
    for li in ol.xpath("./*[local-name()='li']"):
        anchors = li.xpath("./*[local-name()='a' or local-name()='span']")
        label = _first_text(anchors[:1]) if anchors else None
        href = anchors[0].get("href") if anchors else None
        children: list[NavPoint] = []
        for sub_ol in li.xpath("./*[local-name()='ol']")[:1]:
            children = _parse_nav_list(sub_ol, base_dir, level + 1)
        if not label and not children:
            continue
        points.append(
            NavPoint(
                label=label or "",
                href=resolve_href(base_dir, href) if href else None,
                level=level,
                children=children,
            )
        )
    return points


def parse_nav_document(raw: bytes, source_path: str) -> Navigation | None:
    """Parse an EPUB3 navigation document's ``toc`` nav."""

    root = parse_xml(raw, recover=True)
    navs = root.xpath("//*[local-name()='nav']")
    if not navs:
        return None
    toc = next((nav for nav in navs if "toc" in (_epub_type(nav) or "").split()), navs[0])
    lists = toc.xpath("./*[local-name()='ol'] | ./*/*[local-name()='ol']")
    if not lists:
        return None
    base_dir = posixpath.dirname(source_path)
    return Navigation(kind="nav", source_path=source_path, points=_parse_nav_list(lists[0], base_dir, 1))


def _epub_type(node: etree._Element) -> str | None:
    for key, value in node.attrib.items():
        if key == "type" or key.endswith("}type") or key == "epub:type":
            return value
    return None


def _parse_nav_point(node: etree._Element, base_dir: str, level: int) -> NavPoint:
    label = _first_text(node.xpath("./*[local-name()='navLabel']/*[local-name()='text']")) or ""
    contents = node.xpath("./*[local-name()='content']")
    src = contents[0].get("src") if contents else None
    children = [_parse_nav_point(child, base_dir, level + 1) for child in node.xpath("./*[local-name()='navPoint']")]
    return NavPoint(
        label=label,
        href=resolve_href(base_dir, src) if src else None,
        level=level,
        children=children,
    )


def parse_ncx_document(raw: bytes, source_path: str) -> Navigation | None:
    """Parse an EPUB2 NCX ``navMap``."""

    root = parse_xml(raw, recover=True)
    nav_maps = root.xpath("//*[local-name()='navMap']")
    if not nav_maps:
        return None
    base_dir = posixpath.dirname(source_path)
    points = [_parse_nav_point(node, base_dir, 1) for node in nav_maps[0].xpath("./*[local-name()='navPoint']")]
    return Navigation(kind="ncx", source_path=source_path, points=points)


def _load_navigation(archive: Archive, package: PackageDocument) -> Navigation | None:
    nav_item = next((item for item in package.manifest if item.is_nav), None)
    ncx_items = [item for item in package.manifest if item.media_type == NCX_MEDIA_TYPE]
    if package.toc_id:
        toc_item = package.item_by_id(package.toc_id)
        if toc_item is not None and toc_item not in ncx_items:
            ncx_items.insert(0, toc_item)

    attempts: list[tuple[ManifestItem, str]] = []
    if nav_item is not None:
        attempts.append((nav_item, "nav"))
    attempts.extend((item, "ncx") for item in ncx_items)

    for item, kind in attempts:
        path = item.href.split("#", 1)[0]
        if archive.find(path) is None:
            package.issues.append(f"navigation document {path} is missing")
            continue
        try:
            raw = archive.read(path)
            navigation = parse_nav_document(raw, path) if kind == "nav" else parse_ncx_document(raw, path)
        except (etree.XMLSyntaxError, ArchiveError) as exc:
            package.issues.append(f"navigation document {path} could not be parsed: {exc}")
            continue
        if navigation is not None and navigation.points:
            return navigation
        package.issues.append(f"navigation document {path} has no entries")
    return None


def load_package(archive: Archive) -> PackageDocument:
    """Read the package document; raises ``PackageError`` when it is unusable."""

    opf_path, issues = find_opf_path(archive)
    try:
        root = parse_xml(archive.read(opf_path))
    except etree.XMLSyntaxError as exc:
        raise PackageError(f"Package document is malformed: {exc}", path=opf_path) from exc
    except ArchiveError as exc:
        raise PackageError(f"Package document could not be read: {exc}", path=opf_path) from exc

    base_dir = posixpath.dirname(opf_path)
    spine, toc_id = _parse_spine(root)
    package = PackageDocument(
        opf_path=opf_path,
        version=(root.get("version") or "").strip() or None,
        metadata=_parse_metadata(root),
        manifest=_parse_manifest(root, base_dir),
        spine=spine,
        toc_id=toc_id,
        issues=issues,
    )
    package.navigation = _load_navigation(archive, package)
    logger.debug(
        "Loaded package %s: %d manifest items, %d spine items, navigation=%s",
        opf_path,
        len(package.manifest),
        len(package.spine),
        package.navigation.kind if package.navigation else None,
    )
    return package
