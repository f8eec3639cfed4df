from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, List, Optional

from warden.core.audit.models import Actor, AuditAction
from warden.core.backup.models import BackupKind
from warden.core.config.manager import ConfigManager
from warden.core.errors import WardenError
from warden.core.logger import setup_logging
from warden.core.security_core import SecurityCore


CLI_ACTOR = Actor(actor_id="cli")


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False, default=str))


def _parse_assignments(items: List[str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for item in items:
        if "=" not in item:
            raise argparse.ArgumentTypeError(f"expected key=value, got {item!r}")
        key, raw = item.split("=", 1)
        try:
            out[key.strip()] = json.loads(raw)
        except json.JSONDecodeError:
            out[key.strip()] = raw
    return out


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="warden", description="Warden admin security core")
    ap.add_argument("--root", default=".", help="Directory holding config/warden.json (default: current directory)")
    sub = ap.add_subparsers(dest="command", required=True)

    backup = sub.add_parser("backup", help="Create, restore and manage state backups").add_subparsers(dest="action", required=True)
    p = backup.add_parser("create")
    p.add_argument("kind", nargs="?", default=BackupKind.full.value, choices=[k.value for k in BackupKind])
    p.add_argument("--description", default=None)
    backup.add_parser("list")
    p = backup.add_parser("restore")
    p.add_argument("backup_id")
    p = backup.add_parser("delete")
    p.add_argument("backup_id")
    p = backup.add_parser("export")
    p.add_argument("backup_id")
    p.add_argument("--path", default=None, help="Output file (defaults to the configured storage target)")
    p = backup.add_parser("import")
    p.add_argument("path")

    audit = sub.add_parser("audit", help="Query or export the security audit log").add_subparsers(dest="action", required=True)
    p = audit.add_parser("query")
    p.add_argument("--action", dest="event_action", default=None, choices=[a.value for a in AuditAction])
    p.add_argument("--actor", default=None)
    p.add_argument("--since", type=float, default=None, help="Epoch seconds (inclusive)")
    p.add_argument("--until", type=float, default=None, help="Epoch seconds (inclusive)")
    outcome = p.add_mutually_exclusive_group()
    outcome.add_argument("--success", dest="success", action="store_const", const=True, default=None)
    outcome.add_argument("--failure", dest="success", action="store_const", const=False)
    p.add_argument("--limit", type=int, default=50)
    p = audit.add_parser("export")
    p.add_argument("--out", default=None, help="Write to a file instead of stdout")

    password = sub.add_parser("password", help="Check or generate passwords, show or change the policy").add_subparsers(dest="action", required=True)
    p = password.add_parser("check")
    p.add_argument("password")
    p.add_argument("--first-name", default=None)
    p.add_argument("--last-name", default=None)
    p.add_argument("--email", default=None)
    p = password.add_parser("generate")
    p.add_argument("--length", type=int, default=16)
    p = password.add_parser("policy")
    p.add_argument("--set", dest="assignments", action="append", default=[], metavar="KEY=VALUE")
    p.add_argument("--reset", action="store_true")

    access = sub.add_parser("access", help="Origin checks and lockout management").add_subparsers(dest="action", required=True)
    p = access.add_parser("check")
    p.add_argument("ip")
    p = access.add_parser("unlock")
    p.add_argument("identity")

    sub.add_parser("status", help="Aggregate security status")
    return ap


def _run(core: SecurityCore, args: argparse.Namespace) -> int:
    cmd, action = args.command, getattr(args, "action", None)

    if cmd == "backup":
        vault = core.vault
        if action == "create":
            b = vault.create_backup(BackupKind(args.kind), actor=CLI_ACTOR, description=args.description)
            _print(b.model_dump(mode="json", exclude={"payload"}))
        elif action == "list":
            _print([b.model_dump(mode="json", exclude={"payload"}) for b in vault.list_backups()])
        elif action == "restore":
            _print(vault.restore(args.backup_id, actor=CLI_ACTOR).model_dump(mode="json"))
        elif action == "delete":
            ok = vault.delete_backup(args.backup_id, actor=CLI_ACTOR)
            _print({"deleted": ok, "backup_id": args.backup_id})
            return 0 if ok else 1
        elif action == "export":
            print(vault.export_to_file(args.backup_id, args.path, actor=CLI_ACTOR))
        elif action == "import":
            _print(vault.import_from_file(args.path, actor=CLI_ACTOR).model_dump(mode="json", exclude={"payload"}))
        return 0

    if cmd == "audit":
        if action == "query":
            events = core.audit.query(
                {
                    "start": args.since,
                    "end": args.until,
                    "actor_id": args.actor,
                    "action": args.event_action,
                    "success": args.success,
                }
            )
            _print([ev.model_dump(mode="json") for ev in events[: max(0, int(args.limit))]])
        elif action == "export":
            text = core.audit.export()
            if args.out:
                with open(args.out, "w", encoding="utf-8") as f:
                    f.write(text)
                    f.write("\n")
                print(args.out)
            else:
                print(text)
        return 0

    if cmd == "password":
        engine = core.passwords
        if action == "check":
            info = {"first_name": args.first_name, "last_name": args.last_name, "email": args.email}
            res = engine.validate(args.password, user_info=info if any(info.values()) else None)
            _print(res.model_dump(mode="json"))
            return 0 if res.is_valid else 1
        if action == "generate":
            print(engine.generate_password(args.length))
            return 0
        if action == "policy":
            if args.reset:
                policy = engine.reset_policy(actor=CLI_ACTOR)
            elif args.assignments:
                policy = engine.update_policy(actor=CLI_ACTOR, **_parse_assignments(args.assignments))
            else:
                policy = engine.get_policy()
            _print({"policy": policy.model_dump(), "requirements": engine.requirements(policy)})
            return 0

    if cmd == "access":
        if action == "check":
            allowed = core.gate.validate_origin(args.ip)
            _print({"ip": args.ip, "allowed": allowed})
            return 0 if allowed else 1
        if action == "unlock":
            was_locked = core.gate.unlock(args.identity, actor=CLI_ACTOR)
            _print({"identity": args.identity.strip().lower(), "was_locked": was_locked})
            return 0

    if cmd == "status":
        _print(core.status())
        return 0

    return 2


def main(argv: Optional[List[str]] = None, *, core: Optional[SecurityCore] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    try:
        if core is None:
            cfg = ConfigManager(args.root).load()
            setup_logging(cfg.logging.log_dir, cfg.logging.level)
            core = SecurityCore(cfg)
        return _run(core, args)
    except WardenError as e:
        print(json.dumps({"error": e.to_dict()}, indent=2, ensure_ascii=False, default=str), file=sys.stderr)
        return 1
    except argparse.ArgumentTypeError as e:
        ap.error(str(e))
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
