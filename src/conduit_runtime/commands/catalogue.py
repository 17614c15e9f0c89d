"""Design commands forwarded to the executor.

Each entry validates locally, then sends one ``execute-command`` per unit
(or per call, for plain commands). Batch policy and concurrency come from
the command's family.
"""

from __future__ import annotations

from typing import Any

from ..config import RuntimeConfig
from ..registry import (
    FAMILY_POLICY,
    BatchSpec,
    CommandContext,
    CommandDescriptor,
    CommandFamily,
    CommandHandler,
    CommandRegistry,
)
from ..validation import NodeId
from .schemas import (
    EmptyParams,
    ExportParams,
    FillUnit,
    FontUnit,
    InsertChildUnit,
    MoveUnit,
    RectangleUnit,
    RenameUnit,
    ScanTextNodesParams,
    SelectionParams,
    TextUnit,
)


def remote(command: str, *, wrap: str | None = None) -> CommandHandler:
    """Handler that forwards its validated params to the executor.

    Scalar units (a bare node id) are sent as ``{wrap: value}``.
    """

    async def handler(params: Any, ctx: CommandContext) -> Any:
        if wrap is not None:
            params = {wrap: params}
        return await ctx.execute(command, params)

    handler.__name__ = f"remote_{command}"
    return handler


def scan_text_nodes(default_chunk_size: int) -> CommandHandler:
    """Remote scan that fills in the configured chunk size."""

    async def handler(params: ScanTextNodesParams, ctx: CommandContext) -> Any:
        if params.chunk_size is None:
            params = params.model_copy(update={"chunk_size": default_chunk_size})
        return await ctx.execute("scan_text_nodes", params)

    return handler


def batch_spec(
    singular: str,
    plural: str,
    family: CommandFamily,
    *,
    key_field: str | None = "nodeId",
    chunk_size: int | None = None,
) -> BatchSpec:
    """Batch convention for a family: reads run concurrently, writes in order."""
    return BatchSpec(
        singular=singular,
        plural=plural,
        policy=FAMILY_POLICY[family],
        key_field=key_field,
        concurrent=family == CommandFamily.READ,
        chunk_size=chunk_size,
    )


def register_design_commands(registry: CommandRegistry, config: RuntimeConfig) -> None:
    read, create = CommandFamily.READ, CommandFamily.CREATE
    mutate, structure = CommandFamily.MUTATE, CommandFamily.STRUCTURE

    descriptors = [
        CommandDescriptor(
            name="get_document_info",
            schema=EmptyParams,
            handler=remote("get_document_info"),
            family=read,
            description="Get the current page and its top-level nodes.",
        ),
        CommandDescriptor(
            name="get_node_info",
            schema=NodeId,
            handler=remote("get_node_info", wrap="nodeId"),
            family=read,
            description="Get details of one or more nodes.",
            batch=batch_spec("nodeId", "nodeIds", read),
        ),
        CommandDescriptor(
            name="create_rectangle",
            schema=RectangleUnit,
            handler=remote("create_rectangle"),
            family=create,
            description="Create one or more rectangles.",
            batch=batch_spec("rectangle", "rectangles", create, key_field="name"),
        ),
        CommandDescriptor(
            name="rename_layer",
            schema=RenameUnit,
            handler=remote("rename_layer"),
            family=mutate,
            description="Rename one or more layers.",
            batch=batch_spec("rename", "renames", mutate),
        ),
        CommandDescriptor(
            name="move_node",
            schema=MoveUnit,
            handler=remote("move_node"),
            family=mutate,
            description="Move one or more nodes to absolute canvas coordinates.",
            batch=batch_spec("move", "moves", mutate),
        ),
        CommandDescriptor(
            name="set_fill_color",
            schema=FillUnit,
            handler=remote("set_fill_color"),
            family=mutate,
            description="Set the solid fill color of one or more nodes.",
            batch=batch_spec("entry", "entries", mutate),
        ),
        CommandDescriptor(
            name="delete_node",
            schema=NodeId,
            handler=remote("delete_node", wrap="nodeId"),
            family=mutate,
            description="Delete one or more nodes.",
            batch=batch_spec("nodeId", "nodeIds", mutate),
        ),
        CommandDescriptor(
            name="insert_child",
            schema=InsertChildUnit,
            handler=remote("insert_child"),
            family=structure,
            description="Re-parent nodes. Every insert must succeed for the call to succeed.",
            batch=batch_spec("insert", "inserts", structure, key_field="childId"),
        ),
        CommandDescriptor(
            name="set_multiple_text_contents",
            schema=TextUnit,
            handler=remote("set_text_content"),
            family=mutate,
            description="Replace the characters of many text nodes, in chunks.",
            batch=batch_spec("text", "texts", mutate, chunk_size=config.batch_chunk_size),
        ),
        CommandDescriptor(
            name="set_font_name",
            schema=FontUnit,
            handler=remote("set_font_name"),
            family=mutate,
            description="Change the font of many text nodes, in chunks.",
            batch=batch_spec("font", "fonts", mutate, chunk_size=config.batch_chunk_size),
        ),
        CommandDescriptor(
            name="scan_text_nodes",
            schema=ScanTextNodesParams,
            handler=scan_text_nodes(config.scan_chunk_size),
            family=read,
            description="Find every text node under a node; reports progress per chunk.",
            timeout=config.scan_timeout,
        ),
        CommandDescriptor(
            name="export_node_as_image",
            schema=ExportParams,
            handler=remote("export_node_as_image"),
            family=read,
            description="Export a node as PNG, JPG, SVG or PDF (base64).",
        ),
        CommandDescriptor(
            name="set_selection",
            schema=SelectionParams,
            handler=remote("set_selection"),
            family=mutate,
            description="Replace the current selection.",
        ),
    ]
    for descriptor in descriptors:
        registry.register(descriptor)
