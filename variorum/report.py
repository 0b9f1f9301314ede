"""
Variorum Report CLI
===================

Resolves spine chunks from the command line and prints what came out.

COMMANDS:
- resolve:  Resolve one chunk and print its apparatus summary
- editions: List configured editions
- graph:    Resolve chunks and print apparatus graph metrics

USAGE:
    python -m variorum.report [COMMAND] [ARGS]
"""
import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from typing import List, Optional

from .contracts import RangeFailurePolicy, VariorumError
from .service import VariorumContext, create_context
from .spine import ResolverConfig
from .topology import ApparatusGraph


def build_context(args) -> VariorumContext:
    config = ResolverConfig.from_env()
    if args.spine_url_template:
        config = replace(config, spine_url_template=args.spine_url_template)
    if args.strict:
        config = replace(config, range_failure_policy=RangeFailurePolicy.RAISE)
    return create_context(config, editions_path=args.editions)


def cmd_resolve(args) -> int:
    """Resolve one chunk."""
    context = build_context(args)
    try:
        print(f"[*] Resolving chunk {args.chunk}: {context.get_spine(args.chunk).url}")
        spine = asyncio.run(context.resolve(args.chunk))
    except VariorumError as e:
        print(f"[!] {e.code.name}: {e}")
        return 1

    stats = spine.stats
    print(f"    Apparatus: {stats.apparatus_count}")
    print(f"    Pointers:  {stats.pointer_count} ({stats.rewritten_ranges} rewritten ranges, "
          f"{stats.synthesized_ids} synthesized ids)")
    print(f"    Documents: {stats.referenced_documents}")

    if args.verbose:
        print()
        print("APP | N | GROUP | EDITION | TARGET")
        print("-" * 80)
        for app in spine.apps:
            for ptr in app.pointers:
                n = app.n if app.n is not None else '-'
                print(f"{app.id} | {n} | {ptr.group_id} | {ptr.edition.code} | {ptr.target}")

    if spine.dropped:
        print(f"[!] Dropped {len(spine.dropped)} pointers:")
        for dropped in spine.dropped:
            print(f"    {dropped.apparatus_id}: {dropped.reason.value} {dropped.referenced_url}#{dropped.expression}")
    return 0


def cmd_editions(args) -> int:
    """List editions."""
    context = build_context(args)
    print("CODE | NAME | CHUNKS")
    print("-" * 40)
    for edition in context.registry.all_editions():
        chunks = ','.join(str(c) for c in sorted(edition.chunks))
        print(f"{edition.code} | {edition.name} | {chunks}")
    return 0


def cmd_graph(args) -> int:
    """Resolve chunks and print graph metrics."""
    context = build_context(args)
    chunks = args.chunks or context.chunks

    async def resolve_chunks():
        return [await context.resolve(chunk) for chunk in chunks]

    try:
        spines = asyncio.run(resolve_chunks())
    except VariorumError as e:
        print(f"[!] {e.code.name}: {e}")
        return 1

    graph = ApparatusGraph(context.config.back_reference_attribute)
    graph.build(spines)
    metrics = graph.compute_metrics()
    print(f"[*] Graph over chunks {', '.join(str(c) for c in chunks)}")
    print(f"    Nodes: {metrics.node_count} (apparatus {metrics.apparatus_count}, "
          f"groups {metrics.group_count}, anchors {metrics.anchor_count})")
    print(f"    Edges: {metrics.edge_count}")
    print(f"    Components: {metrics.components_count}")
    shared = graph.shared_anchors()
    if shared:
        print(f"[!] {len(shared)} anchors claimed by more than one apparatus")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Variorum apparatus resolver")
    parser.add_argument("--editions", help="Path to editions.json")
    parser.add_argument("--spine-url-template", help="Spine URL template with {chunk:02d}")
    parser.add_argument("--strict", action="store_true", help="Abort on unresolvable string-ranges")
    parser.add_argument("--log-level", default="WARNING")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_resolve = subparsers.add_parser("resolve", help="Resolve one chunk")
    p_resolve.add_argument("--chunk", type=int, required=True)
    p_resolve.add_argument("-v", "--verbose", action="store_true")
    p_resolve.set_defaults(func=cmd_resolve)

    p_editions = subparsers.add_parser("editions", help="List editions")
    p_editions.set_defaults(func=cmd_editions)

    p_graph = subparsers.add_parser("graph", help="Apparatus graph metrics")
    p_graph.add_argument("--chunks", type=int, nargs="*")
    p_graph.set_defaults(func=cmd_graph)

    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
