#!/usr/bin/env python3
"""Demo: list escrows from the OrbitWork escrow contract.

Environment variables:
     ORBITWORK_RPC_URL         – comma-separated RPC endpoints
                                 (defaults to https://sepolia.unichain.org)
     ORBITWORK_ESCROW_ADDRESS  – escrow contract address
     ORBITWORK_PRIVATE_KEY     – optional; its address is used as the viewer

Usage:
    python scripts/show_escrows.py [viewer_address] [--all]
"""

from __future__ import annotations

import asyncio
import logging
import sys

from orbitwork import DisputeSettlementResolver, EscrowViewBuilder, Web3LedgerClient, next_submittable_index


async def main() -> None:
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    include_all = "--all" in sys.argv[1:]

    client = Web3LedgerClient.from_env()
    viewer = args[0] if args else client.address
    builder = EscrowViewBuilder(client, viewer=viewer, settlements=DisputeSettlementResolver(client))

    print(f"RPC              = {', '.join(client.rpc_urls)}")
    print(f"Escrow contract  = {client.contract_address}")
    print(f"Viewer           = {viewer or '(none)'}")
    print()

    escrows = await builder.fetch_escrows(include_all=include_all)
    for escrow in escrows:
        role = "client" if escrow.is_client else "freelancer" if escrow.is_freelancer else "-"
        print(f"--- escrow #{escrow.id}: {escrow.project_title or '(untitled)'} ---")
        print(f"  status: {escrow.display_status}  role: {role}")
        print(f"  total: {escrow.total_amount}  released: {escrow.released_amount}")
        for index, milestone in enumerate(escrow.milestones):
            line = f"  [{index + 1}] {milestone.status:<9} {milestone.description}"
            if milestone.freelancer_amount is not None:
                line += f"  (freelancer {milestone.freelancer_amount}, client {milestone.client_amount})"
            print(line)
        nxt = next_submittable_index(escrow.milestones)
        print(f"  next submittable: {nxt + 1 if nxt is not None else 'none'}")
        print()

    if viewer:
        print(f"Pending approvals: {await builder.has_pending_approvals()}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(main())
