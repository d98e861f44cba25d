"""
deptdocs CLI — Database bootstrap and folder-tree inspection.

Commands:
- deptdocs init    — Create tables, seed the manage_folders permission
- deptdocs tree    — Print the active folder forest
- deptdocs path    — Print the breadcrumb of a folder
- deptdocs check   — Resolve one (user, folder, action) triple
- deptdocs perms   — Effective permissions of a user on a folder
- deptdocs logs    — Apply audit log retention (compress, then delete)

All commands accept --config (deptdocs.yaml) and --url (overrides database.url).
"""

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from deptdocs.engine.errors import DeptDocsError

logger = logging.getLogger("deptdocs.cli")

ACTIONS = ["read", "write", "delete", "manage"]


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="deptdocs",
        description="deptdocs — Department document folders and access control",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Path to deptdocs.yaml (default: auto-discover)")
    common.add_argument("--url", help="Database URL (overrides database.url)")

    # deptdocs init
    init_parser = subparsers.add_parser("init", parents=[common], help="Create tables and seed data")
    init_parser.add_argument(
        "--admin-department",
        help="Create (or reuse) this department and give it manage_folders",
    )

    # deptdocs tree
    tree_parser = subparsers.add_parser("tree", parents=[common], help="Print the folder forest")
    tree_parser.add_argument("--root", type=int, help="Only print the subtree under this folder id")

    # deptdocs path
    path_parser = subparsers.add_parser("path", parents=[common], help="Print a folder's breadcrumb")
    path_parser.add_argument("folder_id", type=int)

    # deptdocs check
    check_parser = subparsers.add_parser("check", parents=[common], help="Resolve access for a user")
    check_parser.add_argument("user_id", type=int)
    check_parser.add_argument("folder_id", type=int)
    check_parser.add_argument("action", choices=ACTIONS)

    # deptdocs perms
    perms_parser = subparsers.add_parser("perms", parents=[common], help="Effective permissions")
    perms_parser.add_argument("user_id", type=int)
    perms_parser.add_argument("folder_id", type=int)

    # deptdocs logs
    logs_parser = subparsers.add_parser("logs", parents=[common], help="Audit log retention")
    logs_parser.add_argument("--log-dir", help="Override logging.directory")

    args = parser.parse_args(argv)

    commands = {
        "init": cmd_init,
        "tree": cmd_tree,
        "path": cmd_path,
        "check": cmd_check,
        "perms": cmd_perms,
        "logs": cmd_logs,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    from deptdocs.db.session import close_db
    from deptdocs.engine.logging import shutdown_logging

    try:
        return handler(args)
    except DeptDocsError as e:
        print(f"[ERROR] {e.message}")
        return 1
    finally:
        close_db()
        shutdown_logging()


def _open_db(args: argparse.Namespace, create_tables: bool = False):
    from deptdocs.db.session import init_db
    from deptdocs.engine.config import load_config
    from deptdocs.engine.logging import init_logging

    config = load_config(args.config)
    init_logging(
        log_dir=config.logging.directory,
        level=config.logging.level,
        flush_interval_ms=config.logging.async_queue.flush_interval_ms,
        flush_batch_size=config.logging.async_queue.flush_batch_size,
        max_queue_size=config.logging.async_queue.max_queue_size,
    )
    session_factory = init_db(config.database, url=args.url, create_tables=create_tables)
    return config, session_factory


def cmd_init(args: argparse.Namespace) -> int:
    """
    Bootstrap the database:
    1. Load config
    2. Create all tables
    3. Seed the manage_folders permission
    4. Optionally attach it to an admin department
    """
    from sqlalchemy import select

    from deptdocs.db.models import Department, DepartmentPermission, Permission
    from deptdocs.db.session import transaction
    from deptdocs.engine.logging import log, log_system_event
    from deptdocs.folders.schemas import MANAGE_FOLDERS

    config, session_factory = _open_db(args, create_tables=True)
    print(f"[OK] Database tables created ({config.environment})")

    with transaction(session_factory, "cli.init") as session:
        permission = session.scalar(select(Permission).where(Permission.name == MANAGE_FOLDERS))
        if permission is None:
            permission = Permission(
                name=MANAGE_FOLDERS,
                description="Full access to every folder",
                category="folders",
                is_active=True,
            )
            session.add(permission)
            session.flush()
            print(f"[OK] Created permission '{MANAGE_FOLDERS}'")
        else:
            print(f"[INFO] Permission '{MANAGE_FOLDERS}' already exists")

        if args.admin_department:
            department = session.scalar(
                select(Department).where(Department.name == args.admin_department)
            )
            if department is None:
                department = Department(name=args.admin_department, is_active=True)
                session.add(department)
                session.flush()
                print(f"[OK] Created department '{department.name}'")

            linked = session.scalar(
                select(DepartmentPermission).where(
                    DepartmentPermission.department_id == department.id,
                    DepartmentPermission.permission_id == permission.id,
                )
            )
            if linked is None:
                session.add(DepartmentPermission(
                    department_id=department.id, permission_id=permission.id,
                ))
                print(f"[OK] Granted '{MANAGE_FOLDERS}' to department '{department.name}'")

    log(log_system_event("schema_initialized", details={
        "environment": config.environment,
        "admin_department": args.admin_department,
    }))
    return 0


def cmd_tree(args: argparse.Namespace) -> int:
    """Print the active forest, children sorted by name."""
    from deptdocs.folders.directory import FolderDirectory

    config, session_factory = _open_db(args)
    directory = FolderDirectory(session_factory, settings=config.folders)

    lines: List[str] = []

    def walk(parent_id: Optional[int], indent: int) -> None:
        for folder in directory.children(parent_id):
            marker = "" if folder.inherit_permissions else " [no-inherit]"
            lines.append(f"{'  ' * indent}{folder.name} (#{folder.id}, {folder.access_level.value}){marker}")
            walk(folder.id, indent + 1)

    if args.root is not None:
        root = directory.get(args.root)
        lines.append(f"{root.name} (#{root.id}, {root.access_level.value})")
        walk(root.id, 1)
    else:
        walk(None, 0)

    print("\n".join(lines) if lines else "(no folders)")
    return 0


def cmd_path(args: argparse.Namespace) -> int:
    from deptdocs.folders.directory import FolderDirectory

    config, session_factory = _open_db(args)
    directory = FolderDirectory(session_factory, settings=config.folders)
    print(" / ".join(f.name for f in directory.get_hierarchy_path(args.folder_id)))
    return 0


def _resolver(args: argparse.Namespace):
    from deptdocs.folders.entitlements import DatabaseEntitlementProvider
    from deptdocs.folders.hierarchy import HierarchyWalker
    from deptdocs.folders.resolver import AccessResolver

    config, session_factory = _open_db(args)
    provider = DatabaseEntitlementProvider(session_factory)
    resolver = AccessResolver(session_factory, provider, HierarchyWalker(config.folders.max_depth))
    return resolver, provider.principal_for(args.user_id)


def cmd_check(args: argparse.Namespace) -> int:
    """Exit status 0 when allowed, 2 when denied."""
    resolver, principal = _resolver(args)
    allowed = resolver.resolve(principal, args.folder_id, args.action)
    print(f"{'ALLOW' if allowed else 'DENY'}: user {args.user_id} {args.action} folder {args.folder_id}")
    return 0 if allowed else 2


def cmd_perms(args: argparse.Namespace) -> int:
    resolver, principal = _resolver(args)
    held = resolver.effective_permissions(principal, args.folder_id)
    names = [a for a in ACTIONS if any(p.value == a for p in held)]
    print(f"user {args.user_id} on folder {args.folder_id}: {', '.join(names) or '(none)'}")
    return 0


def cmd_logs(args: argparse.Namespace) -> int:
    """Compress and expire audit log files per logging.retention."""
    from deptdocs.engine.config import load_config
    from deptdocs.engine.logging import LogRetentionManager

    config = load_config(args.config)
    manager = LogRetentionManager(
        log_dir=args.log_dir or config.logging.directory,
        retention_days={
            "execution": config.logging.retention.execution_days,
            "security": config.logging.retention.security_days,
        },
        compress_after_days=config.logging.compress_after_days,
    )
    result = manager.cleanup()
    print(f"[OK] Log retention: {result['compressed']} compressed, {result['deleted']} deleted")
    return 0
