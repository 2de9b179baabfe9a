#!/usr/bin/env python3
"""
ACK Lab Two-Agent Example

Runs a seller agent behind an HTTP endpoint and a buyer agent that calls it,
both in one process. A local issuer signs each agent's controller
credential, and both agents trust only that issuer and controller.

    python3 examples/two_agents.py --port 8765 --messages 3
"""

import asyncio
import argparse
import logging

from acklab import (
    AckLabAgent,
    AgentServer,
    DIDResolver,
    Identity,
    SdkConfig,
    TrustPolicy,
    issue_credential,
)

logger = logging.getLogger("example")

CONTROLLER_DID = "did:web:controller.example"

QUOTE_SCHEMA = {
    "type": "object",
    "properties": {
        "item": {"type": "string"},
        "price": {"type": "number"},
    },
    "required": ["item", "price"],
}


def make_agent(issuer: Identity, resolver: DIDResolver, policy: TrustPolicy) -> AckLabAgent:
    identity = Identity.generate()
    credential = issue_credential(
        issuer,
        identity.did,
        types=["ControllerCredential"],
        controller=CONTROLLER_DID,
        expires_in=3600,
    )
    return AckLabAgent.from_identity(identity, [credential], resolver=resolver, policy=policy)


async def quote(input):
    """Seller's message handler."""
    item = input.get("item", "unknown") if isinstance(input, dict) else str(input)
    return {"item": item, "price": 9.99}


async def main(args):
    issuer = Identity.generate()
    resolver = DIDResolver()
    policy = TrustPolicy(
        trusted_issuers=[issuer.did],
        trusted_agent_controllers=[CONTROLLER_DID],
    )

    seller = make_agent(issuer, resolver, policy)
    buyer = make_agent(issuer, resolver, policy)

    logger.info(f"Seller: {await seller.get_did()}")
    logger.info(f"Buyer:  {await buyer.get_did()}")

    server = AgentServer(seller.create_request_handler(quote), port=args.port)
    await server.start()

    try:
        call = buyer.create_agent_caller(server.url, output_schema=QUOTE_SCHEMA)
        for i in range(args.messages):
            reply = await call({"item": f"widget-{i}"})
            logger.info(f"Reply {i + 1}: {reply}")

        logger.info(f"Seller is talking to: {call.counterparty_did}")
    finally:
        await server.stop()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="ACK Lab two-agent example")
    parser.add_argument("--port", type=int, default=8765, help="Seller port")
    parser.add_argument("--messages", type=int, default=3, help="Messages to send")
    parser.add_argument("--log-level", default=SdkConfig.default().log_level)
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level,
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    asyncio.run(main(args))
