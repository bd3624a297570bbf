"""
End-to-end run: a real agent-to-agent payment on Base Sepolia.

Needs COURIER_ENCRYPTION_KEY and a funder key with testnet ETH in
COURIER_E2E_FUNDER_KEY. State is kept in a throwaway data directory.
"""

import os
import sys
import tempfile
from pathlib import Path

from eth_account import Account

from courier.config import Settings
from courier.ledger import RpcLedger
from courier.models import PaymentStatus
from courier.service import build_service
from courier.units import coin_to_base_units, format_coin


FUND_AMOUNT = coin_to_base_units("0.0002")
PAY_AMOUNT = coin_to_base_units("0.00005")


def main():
    print("🚀 Courier E2E Test: agent payment on Base Sepolia")
    print("=" * 55)
    print()

    funder_key = os.environ.get("COURIER_E2E_FUNDER_KEY")
    if not funder_key:
        print("❌ COURIER_E2E_FUNDER_KEY is not set")
        sys.exit(1)

    home = Path(tempfile.mkdtemp(prefix="courier-e2e-"))
    env = dict(os.environ, COURIER_HOME=str(home))
    settings = Settings.from_env(env)
    ledger = RpcLedger.from_settings(settings)

    with build_service(settings, ledger=ledger) as service:
        # 1. Register agents
        print("1️⃣  Registering agents...")
        alice = service.register_agent("alice")
        bob = service.register_agent("bob")
        print(f"   ✅ alice: {alice.address}")
        print(f"   ✅ bob:   {bob.address}")
        print()

        # 2. Fund alice out of band
        print(f"2️⃣  Funding alice with {format_coin(FUND_AMOUNT)}...")
        funder = Account.from_key(funder_key)
        tx = ledger.submit_transfer(funder, alice.address, FUND_AMOUNT)
        print(f"   ✅ Funded: {tx}")
        print(f"   Balance: {format_coin(service.agent_balance('alice').balance)}")
        print()

        # 3. Pay bob
        print(f"3️⃣  alice → bob {format_coin(PAY_AMOUNT)}...")
        pending = service.send_payment("alice", "bob", PAY_AMOUNT, memo="e2e")
        record = service.wait_for(pending.payment_id)
        if record.status != PaymentStatus.COMPLETED:
            print(f"   ❌ {record.status.value}: {record.failure_reason}")
            sys.exit(1)
        print(f"   ✅ Settled: {record.settlement_id}")
        print()

        # 4. Balances
        print("4️⃣  Balances after payment:")
        for agent_id in ("alice", "bob"):
            print(f"   {agent_id}: {format_coin(service.agent_balance(agent_id).balance)}")

    print()
    print(f"🎉 Done. Data left in {home}")


if __name__ == "__main__":
    main()
