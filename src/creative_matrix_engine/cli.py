from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path

from creative_matrix_engine import service
from creative_matrix_engine.config import load_engine_config
from creative_matrix_engine.exceptions import MatrixEngineError, MatrixValidationError
from creative_matrix_engine.matrix_loader import load_matrix_definition
from creative_matrix_engine.models.matrix import GenerationOptions
from creative_matrix_engine.models.schema_export import write_matrix_schema
from creative_matrix_engine.output.writer import write_json
from creative_matrix_engine.runtime import EngineRuntime, build_runtime


def _strip_optional_quotes(value: str) -> str:
    trimmed = value.strip()
    if len(trimmed) >= 2 and ((trimmed[0] == '"' and trimmed[-1] == '"') or (trimmed[0] == "'" and trimmed[-1] == "'")):
        return trimmed[1:-1]
    return trimmed


def _load_env_file(env_path: Path) -> None:
    if not env_path.exists() or not env_path.is_file():
        return

    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, raw_value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        os.environ.setdefault(key, _strip_optional_quotes(raw_value))


def _load_default_env_files() -> None:
    cwd_env = Path.cwd() / ".env"
    project_root_env = Path(__file__).resolve().parents[2] / ".env"

    _load_env_file(project_root_env)
    if cwd_env != project_root_env:
        _load_env_file(cwd_env)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="creative-matrix", description="Creative Matrix Engine")
    parser.add_argument("--config", default=None, help="Engine config file (.yaml/.yml/.json). Defaults to config/engine.yaml.")
    parser.add_argument("--storage-root", default=None, help="Override the JSON matrix store root.")
    parser.add_argument("--user", default=os.getenv("MATRIX_USER", "cli"), help="Identity recorded as createdBy.")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Create a matrix from a definition file")
    create.add_argument("--file", required=True, help="Matrix definition (.yaml/.yml/.json)")

    show = sub.add_parser("show", help="Print one matrix")
    show.add_argument("matrix_id")

    listing = sub.add_parser("list", help="List the matrices of a campaign, newest first")
    listing.add_argument("--campaign", required=True)

    generate = sub.add_parser("generate", help="Regenerate rows from slot candidates")
    generate.add_argument("matrix_id")
    generate.add_argument("--max-rows", type=int, default=None)
    generate.add_argument("--allow-duplicates", action="store_true")
    generate.add_argument("--vary", action="append", default=[], help="Slot id to vary (repeatable). Default: all unlocked slots.")
    generate.add_argument("--priority", type=int, default=None, help="Render priority for generated rows")

    lock_slot = sub.add_parser("lock-slot", help="Pin or release a slot")
    lock_slot.add_argument("matrix_id")
    lock_slot.add_argument("slot_id")
    lock_slot.add_argument("--value", default=None, help="Candidate to pin (default: first candidate)")
    lock_slot.add_argument("--unlock", action="store_true")

    lock_row = sub.add_parser("lock-row", help="Freeze or release a row")
    lock_row.add_argument("matrix_id")
    lock_row.add_argument("row_id")
    lock_row.add_argument("--unlock", action="store_true")

    render_row = sub.add_parser("render-row", help="Render one row and wait for it")
    render_row.add_argument("matrix_id")
    render_row.add_argument("row_id")

    render_all = sub.add_parser("render-all", help="Render every draft row")
    render_all.add_argument("matrix_id")
    render_all.add_argument("--report", default=None, help="Write the batch result as JSON to this path")

    progress = sub.add_parser("progress", help="Show render progress of a matrix")
    progress.add_argument("matrix_id")

    schema = sub.add_parser("schema", help="Write the JSON schema of a matrix definition")
    schema.add_argument("--out", default="schemas/matrix.schema.json")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2))


def _run_command(args: argparse.Namespace, runtime: EngineRuntime) -> None:
    store = runtime.store
    if args.command == "create":
        matrix = service.create_matrix(store, load_matrix_definition(Path(args.file)), user_id=args.user)
        print(f"Created matrix {matrix.id} ({len(matrix.slots)} slots, {len(matrix.rows)} rows)")
    elif args.command == "show":
        _print_json(service.get_matrix(store, args.matrix_id).to_dict())
    elif args.command == "list":
        for matrix in service.list_matrices(store, args.campaign):
            print(f"- {matrix.id} | {matrix.name} | {len(matrix.rows)} rows | created {matrix.created_at}")
    elif args.command == "generate":
        options = GenerationOptions(
            max_rows=args.max_rows,
            allow_duplicates=args.allow_duplicates,
            vary_slots=args.vary,
            render_priority=args.priority,
        )
        matrix = service.generate_combinations(
            store, args.matrix_id, options, default_max_rows=runtime.config.default_max_rows
        )
        locked = sum(1 for row in matrix.rows if row.locked)
        print(f"Matrix {matrix.id} now has {len(matrix.rows)} rows ({locked} locked)")
    elif args.command == "lock-slot":
        matrix = service.set_slot_lock(store, args.matrix_id, args.slot_id, not args.unlock, args.value)
        _, slot = matrix.find_slot(args.slot_id)
        print(f"Slot {slot.id}: locked={slot.locked} value={slot.locked_value}")
    elif args.command == "lock-row":
        matrix = service.set_row_lock(store, args.matrix_id, args.row_id, not args.unlock)
        _, row = matrix.find_row(args.row_id)
        print(f"Row {row.id}: locked={row.locked}")
    elif args.command == "render-row":
        outcome = service.render_row(runtime.orchestrator, args.matrix_id, args.row_id).wait()
        _print_json(outcome.to_dict())
    elif args.command == "render-all":
        result = service.render_all(runtime.orchestrator, args.matrix_id, wait=True)
        print(result.message)
        print(f"- Eligible rows: {result.total_eligible}")
        print(f"- Dispatched: {result.dispatched}")
        print(f"- Rendered: {result.rendered}")
        print(f"- Failed: {result.failed}")
        print(f"- Not dispatched: {result.undispatched}")
        for outcome in result.outcomes:
            if outcome.error:
                print(f"- row={outcome.row_id} status={outcome.status}: {outcome.error}")
        if args.report:
            write_json(result.to_dict(), Path(args.report))
    elif args.command == "progress":
        _print_json(service.get_batch_progress(store, args.matrix_id, runtime.orchestrator).to_dict())


def main(argv: list[str] | None = None) -> None:
    _load_default_env_files()
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")

    if args.command == "schema":
        write_matrix_schema(Path(args.out))
        print(f"Wrote {args.out}")
        return

    try:
        config = load_engine_config(Path(args.config) if args.config else None)
        if args.storage_root:
            config = config.model_copy(update={"storage_root": Path(args.storage_root)})
        runtime = build_runtime(config)
    except MatrixEngineError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    if args.command == "serve":
        import uvicorn

        from creative_matrix_engine.api.app import create_app

        uvicorn.run(create_app(runtime), host=args.host, port=args.port)
        return

    try:
        _run_command(args, runtime)
    except MatrixValidationError as exc:
        raise SystemExit(f"Validation error:\n{exc}") from exc
    except MatrixEngineError as exc:
        raise SystemExit(f"Command failed: {exc}") from exc
    finally:
        runtime.close()


if __name__ == "__main__":
    main()
