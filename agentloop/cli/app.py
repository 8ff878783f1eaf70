"""
Main CLI application for agentloop-core.

Usage:
    agentloop chat PROMPT [--provider NAME] [--model NAME] [--system TEXT] [--json]
    agentloop config show
    agentloop version
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console

from agentloop import __version__
from agentloop.config import load_config
from agentloop.errors import AgentLoopError
from agentloop.llm.types import ToolCall, ToolCallStatus

app = typer.Typer(name="agentloop", help="Agent loop over OpenAI, Anthropic, Gemini and Ollama")
config_app = typer.Typer(help="Configuration management")

app.add_typer(config_app, name="config")

console = Console()
err_console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "agentloop.yaml",
        Path.cwd() / "agentloop.yml",
        Path.home() / ".config" / "agentloop" / "config.yaml",
        Path.home() / ".agentloop" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


_STATUS_STYLE = {
    ToolCallStatus.PENDING: "dim",
    ToolCallStatus.RUNNING: "cyan",
    ToolCallStatus.SUCCESS: "green",
    ToolCallStatus.ERROR: "red",
}


def _print_tool_event(call: ToolCall) -> None:
    style = _STATUS_STYLE[call.status]
    line = f"[{style}]\\[tool {call.status.value}][/{style}] {call.name}"
    if call.status is ToolCallStatus.ERROR and call.error:
        line += f": {call.error}"
    err_console.print(line)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def chat(
    prompt: str = typer.Argument(..., help="User prompt"),
    provider: Optional[str] = typer.Option(None, help="Provider: openai, anthropic, gemini, ollama"),
    model: Optional[str] = typer.Option(None, help="Model identifier"),
    system: Optional[str] = typer.Option(None, "--system", help="System instruction"),
    json_mode: bool = typer.Option(False, "--json", help="Request a JSON object answer"),
):
    """Run one agent loop for PROMPT and stream the answer."""
    from agentloop.orchestrator.core import run_agent_loop
    from agentloop.tools.catalog import ToolCatalogCache
    from agentloop.tools.registry import ToolRegistry

    cfg = load_config(
        _get_config_path(),
        cli_overrides={"provider.name": provider, "provider.model": model},
    )

    registry = ToolRegistry(cache=ToolCatalogCache(cfg.loop.catalog_ttl_seconds))
    registry.load_plugins()

    async def _run() -> str:
        specs = await registry.specs()
        return await run_agent_loop(
            prompt,
            cfg,
            system_instruction=system,
            tool_executor=registry.execute if specs else None,
            tool_event_callback=_print_tool_event,
            tools=specs,
            on_text=lambda fragment: console.print(fragment, end="", markup=False, highlight=False),
            json_mode=json_mode,
        )

    try:
        text = asyncio.run(_run())
    except (AgentLoopError, ValueError) as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    # Streamed text may differ from the final text (markers, notices).
    console.print()
    console.rule(style="dim")
    console.print(text, markup=False, highlight=False)


@config_app.command("show")
def config_show():
    """Show effective config as YAML."""
    cfg = load_config(_get_config_path())
    console.print(yaml.safe_dump(cfg.to_dict(), sort_keys=False), markup=False, highlight=False)


@app.command()
def version():
    """Show version."""
    console.print(f"agentloop-core v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
