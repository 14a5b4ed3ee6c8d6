"""
Demo script for the BuddySafe validation pipeline.

Walks through the main behaviours:
- Benign messages and the result cache
- Supportive handling of emotional distress
- Redirecting concerning content
- Parent escalation for serious content
"""

import asyncio

from buddysafe.safety import (
    ChildRecord,
    InMemorySafetyStore,
    SafetyContext,
    create_orchestrator,
)


async def run_demo():
    """Run a demonstration of the safety pipeline."""
    print("\n" + "=" * 70)
    print("🛡️  BUDDYSAFE DEMO - message safety for children's companions")
    print("=" * 70)

    child = ChildRecord(
        child_id="demo_001",
        name="Alex",
        parent_id="parent_001",
        parent_email="parent@example.com",
    )
    store = InMemorySafetyStore()
    store.register_child(child)
    orchestrator = create_orchestrator(store=store)

    age = 8
    print(f"\n📋 Demo child: {child.name}, age {age}")
    print("-" * 70)

    demos = [
        {
            "title": "Demo 1: Benign Message",
            "input": "I love my dog!",
            "description": "Nothing to flag; the verdict is cached",
        },
        {
            "title": "Demo 2: Repeated Message",
            "input": "I love my dog!",
            "description": "Served from the result cache",
        },
        {
            "title": "Demo 3: Emotional Support",
            "input": "I feel so sad, nobody likes me",
            "description": "Supportive reply instead of a block",
        },
        {
            "title": "Demo 4: Concerning Content",
            "input": "my friend wants us to try vaping",
            "description": "Redirected and logged for parent review",
        },
        {
            "title": "Demo 5: Personal Information",
            "input": "Where do you live?",
            "description": "Escalated to the parent",
        },
    ]

    history: list[str] = []
    for demo in demos:
        print(f"\n{'=' * 70}")
        print(f"📌 {demo['title']}")
        print(f"   {demo['description']}")
        print("-" * 70)
        print(f"\n🧒 {child.name}: {demo['input']}")

        context = SafetyContext(
            child_id=child.child_id,
            child_age=age,
            conversation_id="demo",
            recent_messages=tuple(history),
        )
        verdict = await orchestrator.validate(demo["input"], context)

        print(
            f"\n🔎 {verdict.action.value} (severity {int(verdict.severity)}): "
            f"{verdict.reason}"
        )
        print(
            f"   cache hit: {verdict.cache_hit}, fallback: {verdict.fallback_used}"
        )
        if verdict.flagged_terms:
            print(f"   flagged: {', '.join(verdict.flagged_terms)}")
        response = orchestrator.response_for(verdict, age)
        if response is not None:
            print(f"🤖 {response}")

    await orchestrator.aclose()

    print("\n" + "=" * 70)
    print("📊 Session Summary")
    print("-" * 70)
    events = store.events_for_child(child.child_id)
    print(f"   Safety events logged: {len(events)}")
    for event in events:
        print(f"   - [{event.severity_level}] {event.event_type.value}")
    print(f"   Parent notifications: {len(store.notifications)}")
    print(f"   Cache: {orchestrator.get_metrics()['cache']}")

    print("\n" + "=" * 70)
    print("✅ Demo completed successfully!")
    print("=" * 70 + "\n")


if __name__ == "__main__":
    asyncio.run(run_demo())
