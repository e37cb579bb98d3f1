#!/usr/bin/env python3
"""
x402 Payment Demo Client

This script demonstrates the complete x402 payment flow:
1. Request protected endpoint → Get 402 with payment requirements
2. Build and sign a transfer authorization
3. Retry with X-PAYMENT → Get protected content and settlement receipt

Usage:
    python demo_client.py --wallet <path_to_keypair.json> --url http://localhost:3022/api/premium
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from x402_solana.client import PaymentClient, payment_response
from x402_solana.errors import ConfigurationError, PaymentError
from x402_solana.signers import KeypairSigner, load_signer


def load_wallet(wallet_path: str):
    """Load a Solana CLI keypair file, or generate a throwaway wallet."""
    if not wallet_path:
        print("⚠️  No wallet provided, generating demo wallet...")
        return KeypairSigner.generate()
    signer = load_signer(Path(wallet_path).read_text())
    if signer is None:
        raise ConfigurationError(f"Wallet file is empty: {wallet_path}")
    return signer


async def demo_payment_flow(wallet_path: str, url: str, max_value: int):
    """Run the complete x402 payment demo."""
    print("=" * 70)
    print("x402 Payment Demo - Solana Pay-per-request")
    print("=" * 70)
    print()

    try:
        signer = load_wallet(wallet_path)
    except (OSError, ConfigurationError) as e:
        print(f"❌ Failed to load wallet: {e}")
        return 1
    print(f"✅ Wallet loaded: {signer.address}")
    print()

    print(f"GET {url}")
    async with PaymentClient(signer, max_value=max_value) as client:
        try:
            response = await client.request(url)
        except PaymentError as e:
            print(f"❌ Payment failed ({e.status_code}): {e}")
            return 1

    print(f"Status: {response.status_code}")
    print(json.dumps(response.json(), indent=2))

    receipt = payment_response(response)
    if receipt is not None:
        print()
        print("💰 Settlement receipt:")
        print(receipt.model_dump_json(by_alias=True, indent=2))
        if receipt.transaction_reference:
            print(f"https://solscan.io/tx/{receipt.transaction_reference}?cluster=devnet")
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="x402 Payment Demo Client - Solana pay-per-request"
    )
    parser.add_argument(
        "--wallet",
        type=str,
        help="Path to Solana wallet keypair JSON file",
        default=None,
    )
    parser.add_argument(
        "--url",
        type=str,
        default="http://localhost:3022/api/premium",
        help="Protected resource URL (default: http://localhost:3022/api/premium)",
    )
    parser.add_argument(
        "--max-value",
        type=int,
        default=1_000_000,
        help="Refuse to pay more than this many atomic units",
    )

    args = parser.parse_args()
    sys.exit(asyncio.run(demo_payment_flow(args.wallet, args.url, args.max_value)))


if __name__ == "__main__":
    main()
