from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, TYPE_CHECKING
from urllib.parse import urlparse

from content_migrator.errors import classify_fetch_error

if TYPE_CHECKING:
    from content_migrator.web import PageFetcher

logger = logging.getLogger("content_migrator.tree")


@dataclass
class TreeNode:
    path: str
    urls: List[str] = field(default_factory=list)
    children: Dict[str, "TreeNode"] = field(default_factory=dict)
    count: int = 0

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "urls": list(self.urls),
            "count": self.count,
            "children": {name: child.to_dict() for name, child in self.children.items()},
        }


class SelectionState(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"


def ensure_scheme(url: str) -> str:
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    return url


def is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
        return parsed.scheme in ("http", "https") and bool(parsed.hostname)
    except ValueError:
        return False


def base_url(url: str) -> str:
    """scheme://netloc/path, dropping query string and fragment."""
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


def dedupe_urls(urls: Iterable[str]) -> List[str]:
    """Reduce URLs to their base form, keeping first-seen order. Unparseable URLs pass through as-is."""
    seen: Set[str] = set()
    out: List[str] = []
    for u in urls:
        try:
            key = base_url(u)
        except ValueError:
            key = u
        if key not in seen:
            seen.add(key)
            out.append(key)
    return out


def domain_key(url: str) -> Optional[str]:
    """Normalized `scheme://host` root key ('www.' stripped), or None if the URL does not parse."""
    try:
        parsed = urlparse(url)
        host = parsed.hostname
    except ValueError:
        return None
    if not parsed.scheme or not host:
        return None
    if host.startswith("www."):
        host = host[4:]
    return f"{parsed.scheme}://{host}"


def _segments(url: str) -> List[str]:
    return [s for s in urlparse(url).path.split("/") if s]


def recount(node: TreeNode) -> int:
    total = len(node.urls)
    for child in node.children.values():
        total += recount(child)
    node.count = total
    return total


def build_url_tree(urls: Iterable[str]) -> Dict[str, TreeNode]:
    """Group URLs into one tree per normalized domain.

    A URL is stored only on the node of its last path segment; root-path URLs
    land on the domain node. Malformed URLs are skipped.
    """
    tree: Dict[str, TreeNode] = {}
    for url in dedupe_urls(urls):
        key = domain_key(url)
        if key is None:
            continue
        try:
            parts = _segments(url)
        except ValueError:
            continue
        root = tree.get(key)
        if root is None:
            root = tree[key] = TreeNode(path=key)
        current = root
        for part in parts:
            child = current.children.get(part)
            if child is None:
                child = current.children[part] = TreeNode(path=f"{current.path}/{part}")
            current = child
        current.urls.append(url)

    for root in tree.values():
        recount(root)
    return tree


def node_urls(node: TreeNode) -> List[str]:
    urls = list(node.urls)
    for child in node.children.values():
        urls.extend(node_urls(child))
    return urls


def selection_state(node: TreeNode, selected: Set[str]) -> SelectionState:
    urls = node_urls(node)
    hits = sum(1 for u in urls if u in selected)
    if hits == 0:
        return SelectionState.NONE
    if hits == len(urls):
        return SelectionState.FULL
    return SelectionState.PARTIAL


def toggle_selection(node: TreeNode, selected: Set[str]) -> Set[str]:
    """Select the whole subtree, or deselect it when it is already fully selected."""
    urls = set(node_urls(node))
    if selection_state(node, selected) is SelectionState.FULL:
        return set(selected) - urls
    return set(selected) | urls


def ancestor_paths(url: str) -> List[str]:
    """Tree paths from the domain root down to (and including) the node for `url`."""
    key = domain_key(url)
    if key is None:
        return []
    paths = [key]
    current = key
    for part in _segments(url):
        current = f"{current}/{part}"
        paths.append(current)
    return paths


def find_node(tree: Dict[str, TreeNode], path: str) -> Optional[TreeNode]:
    key = domain_key(path)
    if key is None or key not in tree:
        return None
    node = tree[key]
    for part in _segments(path):
        node = node.children.get(part)
        if node is None:
            return None
    return node


class SiteMap:
    """Discovered URL space for one session: URLs, tree, selection and expanded nodes."""

    def __init__(self, urls: Iterable[str] = (), selected: Iterable[str] = ()):
        self.urls: List[str] = []
        self.tree: Dict[str, TreeNode] = {}
        self.selected: Set[str] = set()
        self.expanded: Set[str] = set()
        self._lock = asyncio.Lock()
        self.load(urls)
        self.selected = set(selected) & set(self.urls)

    def load(self, urls: Iterable[str]) -> None:
        self.urls = dedupe_urls(urls)
        self.tree = build_url_tree(self.urls)
        self.selected = set()
        self.expanded = {node.path for node in self.tree.values()}

    @property
    def total(self) -> int:
        return sum(node.count for node in self.tree.values())

    def selected_urls(self) -> List[str]:
        return [u for u in self.urls if u in self.selected]

    def toggle(self, path: str) -> SelectionState:
        node = find_node(self.tree, path)
        if node is None:
            raise KeyError(path)
        self.selected = toggle_selection(node, self.selected)
        return selection_state(node, self.selected)

    async def map_site(self, fetcher: "PageFetcher", url: str, limit: int = 200) -> List[str]:
        """Run discovery from the site root and replace the URL space with its result."""
        logger.info("map_site | url=%s limit=%d", url, limit)
        result = await fetcher.map_site(url, limit=limit)
        if not result.success:
            raise classify_fetch_error(result.error or "Failed to map website")
        async with self._lock:
            self.load(result.urls)
        logger.info("map_site | discovered=%d unique=%d", len(result.urls), len(self.urls))
        return list(self.urls)

    async def map_node(self, fetcher: "PageFetcher", path: str, limit: int = 200) -> List[str]:
        """Discover deeper under one node and splice the result into the tree.

        Returned URLs outside the node's path are dropped. When nothing remains
        (or discovery fails) the path itself is added so leaf pages still
        make progress. New URLs are selected, and the node plus its ancestors
        are expanded.
        """
        logger.info("map_node | path=%s", path)
        try:
            result = await fetcher.map_site(path, limit=limit)
            found = result.urls if result.success else []
            if not result.success:
                logger.warning("map_node | discovery failed path=%s error=%s", path, result.error)
        except Exception as e:
            logger.warning("map_node | discovery raised path=%s error=%s", path, e)
            found = []

        scoped = [u for u in found if _within(u, path)]
        to_add = dedupe_urls(scoped) if scoped else dedupe_urls([path])

        async with self._lock:
            known = set(self.urls)
            urls = self.urls + [u for u in to_add if u not in known]
            tree = build_url_tree(urls)
            selected = self.selected | set(to_add)
            expanded = self.expanded | set(ancestor_paths(path))
            self.urls, self.tree, self.selected, self.expanded = urls, tree, selected, expanded

        logger.info("map_node | path=%s found=%d added=%d total=%d", path, len(found), len(to_add), len(self.urls))
        return to_add


def _within(url: str, path: str) -> bool:
    """True when `url` is on the same site as `path` and at or below it, by whole segments."""
    key = domain_key(url)
    if key is None or key != domain_key(path):
        return False
    prefix = _segments(path)
    return _segments(url)[: len(prefix)] == prefix
