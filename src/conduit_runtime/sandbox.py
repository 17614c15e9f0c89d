"""In-memory sandbox executor.

A small node tree standing in for a real design document, plus host
handlers for every executor command in the catalogue. It lets the runtime
be exercised end to end (``conduit-runtime serve --sandbox``) and gives
tests a realistic peer.

Documents can be seeded from YAML:

    name: Demo
    nodes:
      - type: FRAME
        name: Card
        children:
          - type: TEXT
            name: Title
            characters: Hello
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .host import HostContext, HostHandler
from .protocol.messages import now_ms

logger = logging.getLogger(__name__)

PAGE_ID = "0:1"
CONTAINER_TYPES = {"PAGE", "FRAME", "GROUP"}
MIME_TYPES = {
    "PNG": "image/png",
    "JPG": "image/jpeg",
    "SVG": "image/svg+xml",
    "PDF": "application/pdf",
}


class SandboxError(Exception):
    """An operation on the sandbox document failed."""

    pass


@dataclass
class SandboxNode:
    id: str
    type: str
    name: str
    x: float = 0.0
    y: float = 0.0
    width: float = 100.0
    height: float = 100.0
    parent_id: str | None = None
    children: list[str] = field(default_factory=list)
    fills: list[dict[str, Any]] = field(default_factory=list)
    corner_radius: float | None = None
    characters: str | None = None
    font_family: str | None = None
    font_style: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "parentId": self.parent_id,
            "children": list(self.children),
            "fills": list(self.fills),
        }
        if self.corner_radius is not None:
            data["cornerRadius"] = self.corner_radius
        if self.type == "TEXT":
            data["characters"] = self.characters or ""
            data["fontName"] = {"family": self.font_family, "style": self.font_style}
        return data


class SandboxDocument:
    """A single page of nodes addressed by ``page:n`` style ids."""

    def __init__(self, name: str = "Sandbox") -> None:
        self.name = name
        self.nodes: dict[str, SandboxNode] = {
            PAGE_ID: SandboxNode(id=PAGE_ID, type="PAGE", name=name, width=0, height=0)
        }
        self.selection: list[str] = []
        self._next_id = 1

    @property
    def page(self) -> SandboxNode:
        return self.nodes[PAGE_ID]

    def get(self, node_id: str) -> SandboxNode:
        node = self.nodes.get(node_id)
        if node is None:
            raise SandboxError(f"Node not found: {node_id}")
        return node

    def add(self, type: str, name: str, parent_id: str | None = None, **attrs: Any) -> SandboxNode:
        parent = self.get(parent_id or PAGE_ID)
        if parent.type not in CONTAINER_TYPES:
            raise SandboxError(f"Node {parent.id} ({parent.type}) cannot have children")
        node = SandboxNode(id=f"1:{self._next_id}", type=type, name=name, parent_id=parent.id)
        self._next_id += 1
        for key, value in attrs.items():
            if not hasattr(node, key) or key in ("id", "parent_id", "children"):
                raise SandboxError(f"Unknown node attribute: {key}")
            setattr(node, key, value)
        self.nodes[node.id] = node
        parent.children.append(node.id)
        return node

    def remove(self, node_id: str) -> SandboxNode:
        node = self.get(node_id)
        if node.id == PAGE_ID:
            raise SandboxError("The page cannot be deleted")
        for child_id in list(node.children):
            self.remove(child_id)
        if node.parent_id is not None:
            self.nodes[node.parent_id].children.remove(node.id)
        del self.nodes[node.id]
        if node.id in self.selection:
            self.selection.remove(node.id)
        return node

    def reparent(self, child_id: str, parent_id: str, index: int | None = None) -> None:
        child = self.get(child_id)
        parent = self.get(parent_id)
        if parent.type not in CONTAINER_TYPES:
            raise SandboxError(f"Node {parent.id} ({parent.type}) cannot have children")
        if child.id == PAGE_ID or child.id == parent.id or self.is_ancestor(child.id, parent.id):
            raise SandboxError(f"Cannot insert {child.id} into its own subtree")
        if child.parent_id is not None:
            self.nodes[child.parent_id].children.remove(child.id)
        position = len(parent.children) if index is None else min(index, len(parent.children))
        parent.children.insert(position, child.id)
        child.parent_id = parent.id

    def is_ancestor(self, ancestor_id: str, node_id: str) -> bool:
        current = self.nodes.get(node_id)
        while current is not None and current.parent_id is not None:
            if current.parent_id == ancestor_id:
                return True
            current = self.nodes.get(current.parent_id)
        return False

    def descendants(self, node_id: str) -> list[SandboxNode]:
        """Depth-first descendants of a node, excluding the node itself."""
        result: list[SandboxNode] = []
        stack = list(reversed(self.get(node_id).children))
        while stack:
            node = self.nodes[stack.pop()]
            result.append(node)
            stack.extend(reversed(node.children))
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SandboxDocument:
        document = cls(name=data.get("name", "Sandbox"))

        def build(spec: dict[str, Any], parent_id: str) -> None:
            spec = dict(spec)
            children = spec.pop("children", [])
            node_type = str(spec.pop("type", "FRAME")).upper()
            name = spec.pop("name", node_type.title())
            attrs = {_snake(key): value for key, value in spec.items()}
            node = document.add(node_type, name, parent_id, **attrs)
            for child in children:
                build(child, node.id)

        for spec in data.get("nodes", []):
            build(spec, PAGE_ID)
        return document

    @classmethod
    def from_yaml(cls, path: str | Path) -> SandboxDocument:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise SandboxError(f"Sandbox document must be a mapping: {path}")
        document = cls.from_dict(data)
        logger.info(f"Loaded sandbox document from {path}: {len(document.nodes) - 1} node(s)")
        return document


def _snake(name: str) -> str:
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in name)


def _color_fill(color: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "SOLID",
        "color": {"r": color["r"], "g": color["g"], "b": color["b"]},
        "opacity": color.get("a", 1.0),
    }


def _text_node(document: SandboxDocument, node_id: str) -> SandboxNode:
    node = document.get(node_id)
    if node.type != "TEXT":
        raise SandboxError(f"Node {node_id} is not a text node")
    return node


def build_sandbox_handlers(document: SandboxDocument) -> dict[str, HostHandler]:
    """Host handlers operating on ``document``, keyed by executor command."""

    async def changed(ctx: HostContext, node_id: str, change: str) -> None:
        await ctx.emit_event(
            "document_change", {"nodeId": node_id, "change": change, "timestamp": now_ms()}
        )

    async def get_document_info(params: dict[str, Any], ctx: HostContext) -> dict[str, Any]:
        page = document.page
        return {
            "id": page.id,
            "name": page.name,
            "type": page.type,
            "children": [
                {"id": child.id, "name": child.name, "type": child.type}
                for child in (document.nodes[cid] for cid in page.children)
            ],
            "nodeCount": len(document.nodes) - 1,
        }

    async def get_node_info(params: dict[str, Any], ctx: HostContext) -> dict[str, Any]:
        return document.get(params["nodeId"]).to_dict()

    async def create_rectangle(params: dict[str, Any], ctx: HostContext) -> dict[str, Any]:
        attrs: dict[str, Any] = {
            "x": params["x"],
            "y": params["y"],
            "width": params["width"],
            "height": params["height"],
        }
        if "cornerRadius" in params:
            attrs["corner_radius"] = params["cornerRadius"]
        if "fillColor" in params:
            attrs["fills"] = [_color_fill(params["fillColor"])]
        name = params.get("name", "Rectangle")
        node = document.add("RECTANGLE", name, params.get("parentId"), **attrs)
        await changed(ctx, node.id, "CREATE")
        return {"id": node.id, "name": node.name, "parentId": node.parent_id}

    async def rename_layer(params: dict[str, Any], ctx: HostContext) -> dict[str, Any]:
        node = document.get(params["nodeId"])
        original = node.name
        node.name = params["newName"]
        await changed(ctx, node.id, "PROPERTY_CHANGE")
        result = {"nodeId": node.id, "originalName": original, "newName": node.name}
        if node.type == "TEXT" and "setAutoRename" in params:
            result["autoRename"] = params["setAutoRename"]
        return result

    async def move_node(params: dict[str, Any], ctx: HostContext) -> dict[str, Any]:
        node = document.get(params["nodeId"])
        node.x, node.y = params["x"], params["y"]
        await changed(ctx, node.id, "PROPERTY_CHANGE")
        return {"nodeId": node.id, "x": node.x, "y": node.y}

    async def set_fill_color(params: dict[str, Any], ctx: HostContext) -> dict[str, Any]:
        node = document.get(params["nodeId"])
        if node.type == "PAGE":
            raise SandboxError("Pages have no fills")
        node.fills = [_color_fill(params["color"])]
        await changed(ctx, node.id, "PROPERTY_CHANGE")
        return {"nodeId": node.id, "fills": node.fills}

    async def delete_node(params: dict[str, Any], ctx: HostContext) -> dict[str, Any]:
        node = document.remove(params["nodeId"])
        await changed(ctx, node.id, "DELETE")
        return {"nodeId": node.id, "name": node.name, "deleted": True}

    async def insert_child(params: dict[str, Any], ctx: HostContext) -> dict[str, Any]:
        document.reparent(params["childId"], params["parentId"], params.get("index"))
        await changed(ctx, params["childId"], "PROPERTY_CHANGE")
        parent = document.get(params["parentId"])
        return {
            "parentId": parent.id,
            "childId": params["childId"],
            "index": parent.children.index(params["childId"]),
        }

    async def set_text_content(params: dict[str, Any], ctx: HostContext) -> dict[str, Any]:
        node = _text_node(document, params["nodeId"])
        node.characters = params["text"]
        await changed(ctx, node.id, "PROPERTY_CHANGE")
        return {"nodeId": node.id, "name": node.name, "characters": node.characters}

    async def set_font_name(params: dict[str, Any], ctx: HostContext) -> dict[str, Any]:
        node = _text_node(document, params["nodeId"])
        node.font_family = params["family"]
        node.font_style = params.get("style", "Regular")
        await changed(ctx, node.id, "PROPERTY_CHANGE")
        font = {"family": node.font_family, "style": node.font_style}
        return {"nodeId": node.id, "fontName": font}

    async def scan_text_nodes(params: dict[str, Any], ctx: HostContext) -> dict[str, Any]:
        node_id = params["nodeId"]

        def describe(node: SandboxNode) -> dict[str, Any]:
            return {
                "id": node.id,
                "name": node.name,
                "characters": node.characters or "",
                "fontName": {"family": node.font_family, "style": node.font_style},
                "x": node.x,
                "y": node.y,
                "width": node.width,
                "height": node.height,
            }

        if not params.get("useChunking", True):
            text_nodes = [n for n in document.descendants(node_id) if n.type == "TEXT"]
            return {
                "nodeId": node_id,
                "count": len(text_nodes),
                "textNodes": [describe(n) for n in text_nodes],
                "chunks": 1,
            }

        async def enumerate_text_nodes() -> list[SandboxNode]:
            return [n for n in document.descendants(node_id) if n.type == "TEXT"]

        async def process(node: SandboxNode) -> dict[str, Any]:
            if node.id not in document.nodes:
                raise SandboxError(f"Node {node.id} was removed during the scan")
            return describe(node)

        runner = ctx.chunked(params.get("chunkSize"))
        result = await runner.run(
            ctx.request_id,
            "scan_text_nodes",
            enumerate_text_nodes,
            process,
            result_payload=lambda r: {"textNodes": r.values, "count": len(r.values)},
        )
        return {
            "nodeId": node_id,
            "count": len(result.values),
            "textNodes": result.values,
            "errors": [{"index": o.index, "error": o.error} for o in result.errors],
            "chunks": result.chunks,
            "commandId": ctx.request_id,
        }

    async def export_node_as_image(params: dict[str, Any], ctx: HostContext) -> dict[str, Any]:
        node = document.get(params["nodeId"])
        fmt = params.get("format", "PNG")
        scale = params.get("scale", 1.0)
        rendered = json.dumps({"node": node.to_dict(), "scale": scale}).encode("utf-8")
        return {
            "nodeId": node.id,
            "format": fmt,
            "scale": scale,
            "mimeType": MIME_TYPES[fmt],
            "width": node.width * scale,
            "height": node.height * scale,
            "imageData": base64.b64encode(rendered).decode("ascii"),
        }

    async def set_selection(params: dict[str, Any], ctx: HostContext) -> dict[str, Any]:
        node_ids = list(params.get("nodeIds", []))
        for node_id in node_ids:
            document.get(node_id)
        document.selection = node_ids
        await ctx.emit_event(
            "selection_change", {"selectedNodeIds": node_ids, "timestamp": now_ms()}
        )
        return {"selectedNodeIds": node_ids}

    return {
        "get_document_info": get_document_info,
        "get_node_info": get_node_info,
        "create_rectangle": create_rectangle,
        "rename_layer": rename_layer,
        "move_node": move_node,
        "set_fill_color": set_fill_color,
        "delete_node": delete_node,
        "insert_child": insert_child,
        "set_text_content": set_text_content,
        "set_font_name": set_font_name,
        "scan_text_nodes": scan_text_nodes,
        "export_node_as_image": export_node_as_image,
        "set_selection": set_selection,
    }
