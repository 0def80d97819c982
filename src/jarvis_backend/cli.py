from __future__ import annotations

import argparse
import json
import sys
import textwrap
from dataclasses import dataclass
from typing import Any, Callable, Mapping

import requests

from jarvis_backend.runtime.diagnostics import DiagnosticCheck, DiagnosticsReport, run_diagnostics

_ACCENT_DEFAULT = "cyan"
_DEFAULT_SERVER_URL = "http://localhost:3000"
_RESET = "\033[0m"
_COLOUR_CODES: Mapping[str, str] = {
    "cyan": "\033[38;5;45m",
    "violet": "\033[38;5;177m",
    "green": "\033[38;5;48m",
    "amber": "\033[38;5;214m",
    "red": "\033[38;5;203m",
}


@dataclass(slots=True)
class _CLIContext:
    accent: str


def _colourise(text: str, style: str) -> str:
    colour = _COLOUR_CODES.get(style, _COLOUR_CODES.get("cyan", ""))
    reset = _RESET if colour else ""
    return f"{colour}{text}{reset}"


def _panel(title: str, body: str, style: str = "cyan") -> str:
    raw_lines: list[str] = []
    for line in body.splitlines() or [""]:
        if not line.strip():
            raw_lines.append("")
            continue
        raw_lines.extend(textwrap.wrap(line, width=72) or [""])

    content_width = max([len(title), *(len(line) for line in raw_lines)])
    border = "=" * (content_width + 4)
    title_line = f"= {title.center(content_width)} ="
    body_lines = [f"| {line.ljust(content_width)} |" for line in (raw_lines or [""])]
    panel_lines = [border, title_line, border, *body_lines, border]
    coloured = [_colourise(line, style) for line in panel_lines]
    return "\n".join(coloured)


def _print_panel(title: str, body: str, style: str = "cyan") -> None:
    print(_panel(title, body, style))


def _format_checks(report: DiagnosticsReport) -> str:
    lines: list[str] = [f"Overall status: {report.status.upper()}"]
    for item in report.checks:
        section = f"- {item.name}: {item.status.upper()}: {item.detail}"
        if item.remediation:
            section += f"\n  Remediation: {item.remediation}"
        lines.append(section)
    return "\n".join(lines)


def _format_services(payload: Mapping[str, Any]) -> str:
    lines: list[str] = []
    priority = payload.get("priority")
    if isinstance(priority, list):
        lines.append(f"Priority: {', '.join(str(name) for name in priority)}")
    services = payload.get("services")
    if isinstance(services, Mapping):
        for name, info in services.items():
            if not isinstance(info, Mapping):
                continue
            state = "UP" if info.get("available") else "DOWN"
            reason = info.get("detail") or info.get("error")
            lines.append(f"- {name}: {state}" + (f" ({reason})" if reason else ""))
    return "\n".join(lines) or "No services reported."


def _extract_error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except json.JSONDecodeError:
        return response.text or "Unknown error"
    if not isinstance(data, Mapping):
        return json.dumps(data)
    message = data.get("details") or data.get("message") or data.get("error")
    if message:
        return str(message)
    return json.dumps(data)


def _run_with_uvicorn(options: Mapping[str, object]) -> None:
    import uvicorn

    from jarvis_backend.server import configure_logging

    configure_logging()
    uvicorn.run("jarvis_backend.server:create_app", factory=True, log_config=None, **options)


def _serve_command(args: argparse.Namespace, ctx: _CLIContext) -> int:
    options: dict[str, object] = {
        "host": args.host,
        "port": args.port,
        "reload": args.reload,
    }
    summary = f"Uvicorn on {args.host}:{args.port}" + (" with reload" if args.reload else "")
    _print_panel("Server", summary, ctx.accent)

    try:
        _run_with_uvicorn(options)
    except KeyboardInterrupt:
        _print_panel("Server", "Interrupted by user", "amber")
        return 0
    except ImportError as exc:
        _print_panel("Server", f"Uvicorn is required to serve the API: {exc}", "red")
        return 1
    return 0


def _chat_command(args: argparse.Namespace, ctx: _CLIContext) -> int:
    url = args.server_url.rstrip("/") + "/api/ai/chat"
    payload = {"message": args.message, "sessionId": args.session_id, "enhance": args.enhance}

    try:
        response = requests.post(url, json=payload, timeout=60)
    except requests.RequestException as exc:
        _print_panel("Chat", f"Failed to contact service: {exc}", "red")
        return 1

    if response.status_code != requests.codes.ok:
        message = _extract_error_message(response)
        _print_panel("Chat", f"Service returned {response.status_code}: {message}", "red")
        return 1

    try:
        data = response.json()
    except json.JSONDecodeError as exc:
        _print_panel("Chat", f"Invalid JSON payload: {exc}", "red")
        return 1

    reply = data.get("response")
    if not isinstance(reply, str):
        _print_panel("Chat", "Response did not include reply text.", "amber")
        return 1

    intent = data.get("intent") or {}
    sentiment = data.get("sentiment") or {}
    footer = f"\n\nIntent: {intent.get('type', 'general')}  Sentiment: {sentiment.get('label', 'NEUTRAL')}"
    _print_panel("Jarvis", reply + footer, "green")
    return 0


def _health_command(args: argparse.Namespace, ctx: _CLIContext) -> int:
    url = args.server_url.rstrip("/") + "/health"
    try:
        response = requests.get(url, timeout=10)
    except requests.RequestException as exc:
        _print_panel("Health", f"Health check failed: {exc}", "red")
        return 1

    status_style = "green" if response.status_code == requests.codes.ok else "amber"
    services: Mapping[str, Any] = {}
    try:
        data = response.json()
    except json.JSONDecodeError:
        status = response.text or "unknown"
    else:
        status = str(data.get("status", "unknown"))
        services = data.get("services") or {}

    lines = [f"HTTP {response.status_code}", f"Status: {status}"]
    lines.extend(
        f"- {name}: {'configured' if configured else 'not configured'}" for name, configured in services.items()
    )
    _print_panel("Health", "\n".join(lines), status_style)
    return 0 if response.status_code == requests.codes.ok else 1


def _fetch_services(server_url: str) -> tuple[int, Mapping[str, Any] | None, str]:
    url = server_url.rstrip("/") + "/api/ai/services"
    try:
        response = requests.get(url, timeout=60)
    except requests.RequestException as exc:
        return 1, None, f"Failed to contact service: {exc}"
    if response.status_code != requests.codes.ok:
        return 1, None, f"Service returned {response.status_code}: {_extract_error_message(response)}"
    try:
        return 0, response.json(), ""
    except json.JSONDecodeError as exc:  # pragma: no cover
        return 1, None, f"Invalid JSON response: {exc}"


def _services_command(args: argparse.Namespace, ctx: _CLIContext) -> int:
    if args.set_priority:
        url = args.server_url.rstrip("/") + "/api/ai/services/priority"
        names = [name.strip() for name in args.set_priority.split(",") if name.strip()]
        try:
            response = requests.put(url, json={"priority": names}, timeout=10)
        except requests.RequestException as exc:
            _print_panel("Services", f"Failed to contact service: {exc}", "red")
            return 1
        if response.status_code != requests.codes.ok:
            _print_panel("Services", f"Service returned {response.status_code}: {_extract_error_message(response)}", "red")
            return 1
        _print_panel("Services", f"Priority set to {', '.join(response.json().get('priority', names))}", ctx.accent)
        return 0

    exit_code, payload, error = _fetch_services(args.server_url)
    if payload is None:
        _print_panel("Services", error, "red")
        return exit_code
    _print_panel("Services", _format_services(payload), ctx.accent)
    return 0


def _diagnostics_local(ctx: _CLIContext, overrides: Mapping[str, str] | None = None) -> DiagnosticsReport:
    report = run_diagnostics(overrides=overrides)
    _print_panel("Local diagnostics", _format_checks(report), ctx.accent)
    return report


def _diagnostics_remote(ctx: _CLIContext, server_url: str) -> tuple[int, str]:
    exit_code, payload, error = _fetch_services(server_url)
    if payload is None:
        _print_panel("Remote diagnostics", error, "red")
        return 1, "unknown"

    services = payload.get("services") or {}
    checks = [
        DiagnosticCheck(
            name=str(name),
            status="ok" if info.get("available") else "warning",
            detail=str(info.get("detail") or info.get("error") or ("available" if info.get("available") else "unavailable")),
        )
        for name, info in services.items()
        if isinstance(info, Mapping)
    ]
    if checks and not any(check.status == "ok" for check in checks):
        status = "error"
    elif any(check.status != "ok" for check in checks):
        status = "warning"
    else:
        status = "ok"
    report = DiagnosticsReport(status=status, checks=checks)
    _print_panel("Remote diagnostics", _format_checks(report), ctx.accent)
    return exit_code, report.status


def _diagnostics_command(args: argparse.Namespace, ctx: _CLIContext) -> int:
    exit_code = 0

    if args.local or args.local_only:
        report = _diagnostics_local(ctx)
        if report.status == "error":
            exit_code = 1

    if args.local_only:
        return exit_code

    remote_exit, status = _diagnostics_remote(ctx, args.server_url)
    exit_code = max(exit_code, remote_exit)
    if status == "error":
        exit_code = 1
    return exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Operate the Jarvis assistant backend from your terminal.")
    parser.add_argument(
        "--accent",
        default=_ACCENT_DEFAULT,
        choices=sorted(_COLOUR_CODES.keys()),
        help="Accent colour for decorated output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP service under uvicorn.")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Host interface for the HTTP server.")
    serve_parser.add_argument("--port", type=int, default=3000, help="Port for the HTTP server.")
    serve_parser.add_argument("--reload", action="store_true", help="Restart the server when source files change.")
    serve_parser.set_defaults(handler=_serve_command)

    chat_parser = subparsers.add_parser("chat", help="Send a message and display the assistant reply.")
    chat_parser.add_argument("message", help="Message to send to the assistant.")
    chat_parser.add_argument("--session-id", default="default", help="Conversation session identifier.")
    chat_parser.add_argument("--enhance", action="store_true", help="Polish the reply with the text enhancer.")
    chat_parser.add_argument(
        "--server-url",
        default=_DEFAULT_SERVER_URL,
        help="Base URL of the running backend.",
    )
    chat_parser.set_defaults(handler=_chat_command)

    health_parser = subparsers.add_parser("health", help="Check the health endpoint and display status.")
    health_parser.add_argument(
        "--server-url",
        default=_DEFAULT_SERVER_URL,
        help="Base URL of the running backend.",
    )
    health_parser.set_defaults(handler=_health_command)

    services_parser = subparsers.add_parser("services", help="Probe every AI backend or change their priority.")
    services_parser.add_argument(
        "--server-url",
        default=_DEFAULT_SERVER_URL,
        help="Base URL of the running backend.",
    )
    services_parser.add_argument(
        "--set-priority",
        metavar="NAMES",
        help="Comma separated backend names, highest priority first.",
    )
    services_parser.set_defaults(handler=_services_command)

    diagnostics_parser = subparsers.add_parser(
        "diagnostics",
        help="Run local and remote diagnostics to validate configuration.",
    )
    diagnostics_parser.add_argument(
        "--server-url",
        default=_DEFAULT_SERVER_URL,
        help="Base URL of the running backend.",
    )
    diagnostics_parser.add_argument(
        "--local",
        action="store_true",
        help="Include local diagnostics before contacting the server.",
    )
    diagnostics_parser.add_argument(
        "--local-only",
        action="store_true",
        help="Run diagnostics without contacting the remote server.",
    )
    diagnostics_parser.set_defaults(handler=_diagnostics_command)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    context = _CLIContext(accent=args.accent)
    handler: Callable[[argparse.Namespace, _CLIContext], int] | None = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 1
    return handler(args, context)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
