"""
CLI entry point for BuddySafe.

Runs an interactive loop that validates typed messages for a demo child
and prints the verdict plus the response the child would see.
"""

from __future__ import annotations

import argparse
import asyncio

from buddysafe.config import get_settings
from buddysafe.logging import get_logger
from buddysafe.safety.base import SafetyAction, SafetyContext
from buddysafe.safety.escalation import ChildRecord, InMemorySafetyStore
from buddysafe.safety.orchestrator import create_orchestrator

logger = get_logger(__name__)

DEMO_CHILD = ChildRecord(
    child_id="demo_child",
    name="Alex",
    parent_id="demo_parent",
    parent_email="parent@example.com",
)

ACTION_ICONS = {
    SafetyAction.ALLOW: "✅",
    SafetyAction.WARN: "⚠️ ",
    SafetyAction.BLOCK: "⛔",
    SafetyAction.ESCALATE: "🚨",
}


async def interactive_session(age: int = 8):
    """Validate messages typed at the prompt until the user quits."""
    settings = get_settings()

    print("\n" + "=" * 60)
    print("🛡️  BuddySafe - message safety checker")
    print("=" * 60)

    if not settings.validate_api_key():
        print("\n⚠️  Note: no GOOGLE_API_KEY configured")
        print("   Messages are checked by the local fallback validator only\n")

    store = InMemorySafetyStore()
    store.register_child(DEMO_CHILD)
    orchestrator = create_orchestrator(settings=settings, store=store)

    print(f"\nChecking messages for {DEMO_CHILD.name} (age {age}).")
    print("Type 'quit' or 'exit' to end the session.")
    print("-" * 60 + "\n")

    history: list[str] = []
    try:
        while True:
            try:
                user_input = input(f"🧒 {DEMO_CHILD.name}: ").strip()
            except (KeyboardInterrupt, EOFError):
                print("\n")
                break

            if not user_input:
                continue
            if user_input.lower() in ["quit", "exit", "bye"]:
                break

            context = SafetyContext(
                child_id=DEMO_CHILD.child_id,
                child_age=age,
                conversation_id="cli",
                recent_messages=tuple(history[:10]),
            )
            verdict = await orchestrator.validate(user_input, context)
            history.insert(0, user_input)

            icon = ACTION_ICONS.get(verdict.action, "")
            print(
                f"\n{icon} {verdict.action.value} "
                f"(severity {int(verdict.severity)}) - {verdict.reason}"
            )
            if verdict.flagged_terms:
                print(f"   flagged: {', '.join(verdict.flagged_terms)}")
            flags = [
                name
                for name, on in (
                    ("cache hit", verdict.cache_hit),
                    ("fallback", verdict.fallback_used),
                )
                if on
            ]
            if flags:
                print(f"   ({', '.join(flags)})")
            response = orchestrator.response_for(verdict, age)
            if response is not None:
                print(f"🤖 {response}")
            print()
    finally:
        await orchestrator.aclose()

    print("🛡️  Session summary:")
    pipeline = orchestrator.get_metrics()["pipeline"]
    print(f"   messages checked: {pipeline['evaluations']}")
    print(f"   escalations: {pipeline['escalations']['attempted']}\n")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Interactive message safety checker")
    parser.add_argument("--age", type=int, default=8, help="Demo child's age")
    args = parser.parse_args()
    asyncio.run(interactive_session(age=args.age))


if __name__ == "__main__":
    main()
