#!/usr/bin/env python3
"""
Personalization Engine Command Line Interface

Main entry point for the `personalize` command.

Usage:
    personalize --action record --user alice --type item_completed \\
        --data '{"item": {"type": "coding", "estimated_minutes": 60}, "actual_duration": 90}'
    personalize --action rebuild --user alice
    personalize --action estimate --user alice --task '{"type": "coding", "estimated_minutes": 60}'
    personalize --action notify --user alice --deliver \\
        --notification '{"type": "reminder", "message": "Standup in 10 minutes", "priority": "high"}'
    personalize --action release --user alice
    personalize --action feedback --user alice --data '{"type": "general", "rating": 4}'
"""

import argparse
import json
import sys
from typing import Any

from personalize.config import load_config
from personalize.engine import PersonalizationEngine
from personalize.errors import PersonalizationError
from personalize.logging_config import setup_logging

ACTIONS = [
    "record",
    "rebuild",
    "model",
    "insights",
    "estimate",
    "suggest",
    "notify",
    "pending",
    "release",
    "frequency",
    "limits",
    "feedback",
    "history",
    "signals",
    "clear",
]


def _json_arg(value: str | None, flag: str) -> Any:
    if value is None:
        raise PersonalizationError(f"{flag} required for this action")
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise PersonalizationError(f"Invalid JSON in {flag}: {e}") from e


def run(engine: PersonalizationEngine, args: argparse.Namespace) -> dict[str, Any]:
    user = args.user

    if args.action == "record":
        if not args.type:
            raise PersonalizationError("--type required for record action")
        data = _json_arg(args.data, "--data") if args.data else {}
        return engine.record_event(user, args.type, data)

    if args.action == "rebuild":
        return engine.rebuild(user)

    if args.action == "model":
        return {"success": True, "model": engine.model_summary(user)}

    if args.action == "insights":
        return {"success": True, "insights": engine.get_learning_insights(user)}

    if args.action == "estimate":
        if args.tasks:
            return {"success": True, **engine.total_time(user, _json_arg(args.tasks, "--tasks"))}
        task = _json_arg(args.task, "--task")
        if args.advice:
            return {"success": True, **engine.suggest_better_estimate(user, task)}
        return {"success": True, "estimate": engine.estimate(user, task)}

    if args.action == "suggest":
        suggestions = engine.adapt_suggestions(user, _json_arg(args.suggestions, "--suggestions"))
        return {"success": True, "suggestions": suggestions}

    if args.action == "notify":
        notification = _json_arg(args.notification, "--notification")
        if args.deliver:
            return {"success": True, **engine.deliver_notification(user, notification)}
        return {"success": True, "notification": engine.adapt_notification(user, notification)}

    if args.action == "pending":
        notifications = engine.pending_notifications(user, due_only=args.due)
        return {"success": True, "notifications": notifications}

    if args.action == "release":
        return {"success": True, **engine.release_due_notifications(user)}

    if args.action == "frequency":
        return {"success": True, "limits": engine.optimal_frequency(user)}

    if args.action == "limits":
        return {"success": True, **engine.has_reached_limit(user)}

    if args.action == "feedback":
        return engine.submit_feedback(user, _json_arg(args.data, "--data"))

    if args.action == "history":
        return {"success": True, "feedback": engine.feedback_history(user, args.type, days=args.days)}

    if args.action == "signals":
        return {"success": True, "signals": engine.implicit_feedback(user, days=args.days)}

    if args.action == "clear":
        return engine.clear_learning_data(user)

    raise PersonalizationError(f"Unknown action: {args.action}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Personalization Engine - learn from behaviour, adapt estimates and delivery",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Record a finished task
    personalize --action record --user alice --type item_completed \\
        --data '{"item": {"type": "coding", "estimated_minutes": 60}, "actual_duration": 90}'

    # Batch total for several tasks
    personalize --action estimate --user alice --tasks '[{"size": "small"}, {"size": "large"}]'

    # Rank candidate suggestions
    personalize --action suggest --user alice \\
        --suggestions '[{"type": "take_break", "message": "Time for a short break."}]'

    # Rate a suggestion type poorly so it ranks as least valuable
    personalize --action feedback --user alice \\
        --data '{"type": "suggestion", "suggestion_type": "take_break", "outcome": "dismissed", "rating": 1}'

    # Deliver queued notifications that are due
    personalize --action release --user alice

    # Forget everything about a user
    personalize --action clear --user alice
        """,
    )

    parser.add_argument("--action", required=True, choices=ACTIONS, help="Action to perform")
    parser.add_argument("--user", required=True, help="User ID")
    parser.add_argument("--type", help="Event type for record, feedback type for history")
    parser.add_argument("--data", help="JSON object with event data or feedback")
    parser.add_argument("--task", help="JSON task for estimate")
    parser.add_argument("--tasks", help="JSON list of tasks for a batch total")
    parser.add_argument("--advice", action="store_true", help="Suggest a better estimate instead")
    parser.add_argument("--suggestions", help="JSON list of candidate suggestions")
    parser.add_argument("--notification", help="JSON notification for notify")
    parser.add_argument("--deliver", action="store_true", help="Send, queue or skip the notification")
    parser.add_argument("--due", action="store_true", help="Only pending notifications that are due")
    parser.add_argument("--days", type=int, default=30, help="Look-back days for history and signals")
    parser.add_argument("--config", help="Path to a personalization.yaml")
    parser.add_argument("--data-dir", help="Directory holding learning.db and notifications.db")

    args = parser.parse_args(argv)
    setup_logging()

    try:
        engine = PersonalizationEngine(config=load_config(args.config), data_dir=args.data_dir)
        result = run(engine, args)
    except PersonalizationError as e:
        details = e.to_dict() if hasattr(e, "to_dict") else {"error": str(e)}
        result = {"success": False, **details}

    print(json.dumps(result, indent=2, default=str))
    return 0 if result.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())
