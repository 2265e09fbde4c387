from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from uuid import uuid4

import uvicorn

from .api import create_app
from .models import DIFFICULTIES, ENERGY_LEVELS, QUEST_STATUSES, QUEST_TYPES
from .service import TIME_COMMITMENTS, QuestService, ServiceError


def _service() -> QuestService:
    return QuestService.create()


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _print_quest(quest: dict) -> None:
    print(f"{quest.get('id')} :: {quest.get('title')} [{quest.get('status')}, {quest.get('progress', 0)}%]")
    for idx, task in enumerate(quest.get("tasks") or []):
        mark = "x" if task.get("completed") else " "
        print(f"  {idx}. [{mark}] {task.get('title')} ({task.get('estimated_time', 0)} min)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="AuraQuest CLI")
    sub = parser.add_subparsers(dest="command", required=True)
    default_user = os.environ.get("AURAQUEST_USER_ID", "")

    def user_arg(cmd: argparse.ArgumentParser) -> None:
        cmd.add_argument("--user", default=default_user, required=not default_user, help="User id (or AURAQUEST_USER_ID)")

    user_cmd = sub.add_parser("user", help="User records")
    user_sub = user_cmd.add_subparsers(dest="user_command", required=True)
    user_init = user_sub.add_parser("init", help="Create a user with onboarding preferences")
    user_arg(user_init)
    user_init.add_argument("--name", default="")
    user_init.add_argument("--category", action="append", default=[], help="Goal category (repeatable)")
    user_init.add_argument("--difficulty", default="Medium", choices=list(DIFFICULTIES))
    user_init.add_argument("--time-commitment", default="30min", choices=list(TIME_COMMITMENTS))
    user_show = user_sub.add_parser("show", help="Print a user record")
    user_arg(user_show)

    gen_cmd = sub.add_parser("generate", help="Draft, validate and save a quest")
    user_arg(gen_cmd)
    gen_cmd.add_argument("--domain", required=True)
    gen_cmd.add_argument("--goal", required=True, help="Specific goal")
    gen_cmd.add_argument("--type", dest="quest_type", default="daily", choices=list(QUEST_TYPES))
    gen_cmd.add_argument("--difficulty", default="Medium", choices=list(DIFFICULTIES))
    gen_cmd.add_argument("--time", dest="time_available", default="30", help="Minutes available")
    gen_cmd.add_argument("--energy", dest="energy_level", choices=list(ENERGY_LEVELS))
    gen_cmd.add_argument("--constraints")
    gen_cmd.add_argument("--preferences")
    gen_cmd.add_argument("--preview", action="store_true", help="Validate without saving")

    batch_cmd = sub.add_parser("batch", help="Generate quests of one type from onboarding categories")
    user_arg(batch_cmd)
    batch_cmd.add_argument("--type", dest="quest_type", default="daily", choices=list(QUEST_TYPES))
    batch_cmd.add_argument("--count", type=int, default=1)

    edit_cmd = sub.add_parser("edit", help="Edit an open quest")
    user_arg(edit_cmd)
    edit_cmd.add_argument("--quest", required=True, help="Quest id")
    edit_cmd.add_argument("--title")
    edit_cmd.add_argument("--description")
    edit_cmd.add_argument("--difficulty", choices=list(DIFFICULTIES))
    edit_cmd.add_argument("--criterion", dest="success_criteria", action="append", help="Success criterion (repeatable)")

    complete_cmd = sub.add_parser("complete", help="Record quest completion")
    user_arg(complete_cmd)
    complete_cmd.add_argument("--quest", required=True, help="Quest id")
    complete_cmd.add_argument("--minutes", type=float, help="Time taken in minutes")

    skip_cmd = sub.add_parser("skip", help="Skip a quest without penalty")
    user_arg(skip_cmd)
    skip_cmd.add_argument("--quest", required=True, help="Quest id")
    skip_cmd.add_argument("--reason")

    main_cmd = sub.add_parser("main-quest", help="Select or confirm today's main quest")
    user_arg(main_cmd)
    main_cmd.add_argument("--confirm", metavar="QUEST_ID", help="Confirm the selected main quest")

    insights_cmd = sub.add_parser("insights", help="Show behavioral insights")
    user_arg(insights_cmd)

    overview_cmd = sub.add_parser("overview", help="Show dashboard totals")
    user_arg(overview_cmd)

    achievements_cmd = sub.add_parser("achievements", help="List unlocked and available achievements")
    user_arg(achievements_cmd)

    quests_cmd = sub.add_parser("quests", help="List quests")
    user_arg(quests_cmd)
    quests_cmd.add_argument("--status", choices=list(QUEST_STATUSES))
    quests_cmd.add_argument("--type", dest="quest_type", choices=list(QUEST_TYPES))
    quests_cmd.add_argument("--json", action="store_true", help="Print full JSON records")

    api_cmd = sub.add_parser("api", help="Run local API server")
    api_cmd.add_argument("--host", default="127.0.0.1")
    api_cmd.add_argument("--port", type=int, default=8000)

    telemetry_cmd = sub.add_parser("telemetry", help="Telemetry operations")
    telemetry_sub = telemetry_cmd.add_subparsers(dest="telemetry_command", required=True)
    telemetry_sub.add_parser("status", help="Show telemetry status")
    telemetry_export = telemetry_sub.add_parser("export", help="Export aggregated telemetry summary")
    telemetry_export.add_argument("--range", default="7d", help="Window like 7d or 24h")
    telemetry_export.add_argument("--out", help="Optional output JSON path")
    telemetry_export.add_argument("--user", help="Only count events for this user id")
    return parser


def _run(args: argparse.Namespace, service: QuestService, trace_id: str) -> int:
    if args.command == "user":
        if args.user_command == "init":
            _print_json(
                service.create_user(
                    args.user,
                    args.name,
                    args.category,
                    args.difficulty,
                    args.time_commitment,
                    source="cli",
                    trace_id=trace_id,
                )
            )
            return 0
        if args.user_command == "show":
            _print_json(service.get_user(args.user))
            return 0

    if args.command == "generate":
        inputs = {
            "domain": args.domain,
            "specific_goal": args.goal,
            "quest_type": args.quest_type,
            "difficulty": args.difficulty,
            "time_available": args.time_available,
            "energy_level": args.energy_level,
            "constraints": args.constraints,
            "preferences": args.preferences,
        }
        result = service.generate_and_validate(args.user, inputs, preview=args.preview, source="cli", trace_id=trace_id)
        _print_json(result)
        return 1 if result.get("rejected") else 0

    if args.command == "batch":
        result = service.generate_batch(args.user, args.quest_type, args.count, source="cli", trace_id=trace_id)
        _print_json(result)
        return 1 if result["rejected"] and not result["quests"] else 0

    if args.command == "edit":
        changes = {
            "title": args.title,
            "description": args.description,
            "difficulty": args.difficulty,
            "success_criteria": args.success_criteria,
        }
        _print_json(service.edit_quest(args.user, args.quest, changes, source="cli", trace_id=trace_id))
        return 0

    if args.command == "complete":
        _print_json(service.record_completion(args.user, args.quest, args.minutes, source="cli", trace_id=trace_id))
        return 0

    if args.command == "skip":
        _print_json(service.record_skip(args.user, args.quest, args.reason, source="cli", trace_id=trace_id))
        return 0

    if args.command == "main-quest":
        if args.confirm:
            _print_json(service.confirm_main_quest(args.user, args.confirm, source="cli", trace_id=trace_id))
            return 0
        quest = service.get_main_quest(args.user, source="cli", trace_id=trace_id)
        if quest is None:
            print("No active quests.")
            return 0
        print(f"Main quest (impact {quest['intent'].get('impact_score')}):")
        _print_quest(quest)
        return 0

    if args.command == "insights":
        insights = service.get_insights(args.user)
        if not insights:
            print("No insights yet.")
        for item in insights:
            print(f"- [{item['type']}] {item['message']} -> {item['action']}")
        return 0

    if args.command == "overview":
        overview = service.get_overview(args.user)
        totals = overview["quests"]
        print(
            f"Level {overview['user']['level']} ({overview['user']['xp']} xp), "
            f"streak {overview['user']['current_streak']}"
        )
        print(
            f"Quests: {totals['total']} total, {totals['completed']} completed, "
            f"{totals['active']} active ({totals['completion_rate']}% complete)"
        )
        for quest in overview["recent_quests"]:
            _print_quest(quest)
        return 0

    if args.command == "achievements":
        _print_json(service.get_achievements(args.user))
        return 0

    if args.command == "quests":
        quests = service.list_quests(args.user, status=args.status, quest_type=args.quest_type)
        if args.json:
            _print_json(quests)
        else:
            for quest in quests:
                _print_quest(quest)
        return 0

    if args.command == "api":
        app = create_app(service)
        uvicorn.run(app, host=args.host, port=args.port, log_level="info")
        return 0

    if args.command == "telemetry":
        if args.telemetry_command == "status":
            _print_json(service.telemetry_status())
            return 0
        if args.telemetry_command == "export":
            summary = service.telemetry_export(
                args.range,
                out_path=Path(args.out) if args.out else None,
                actor_id=args.user,
            )
            _print_json(summary)
            return 0

    return 1


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    service = _service()
    trace_id = f"cli:{uuid4()}"
    try:
        return _run(args, service, trace_id)
    except ServiceError as exc:
        print(json.dumps(exc.to_dict()), file=sys.stderr)
        return 2
    except ValueError as exc:
        print(json.dumps({"code": "INVALID_REQUEST", "message": str(exc)}), file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
