"""Command-line interface for aico."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Awaitable, Callable, Optional, TypeVar

from . import __version__
from .config import (
    KNOWN_MODELS,
    Config,
    config_file_path,
    describe_provider,
    full_model_for,
    load_config,
    save_config,
)
from .core import AicoWorkflow
from .exceptions import AicoError, ConfigError

RESET = "\033[0m"
BOLD = "\033[1m"
CYAN = "\033[96m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
DIM = "\033[2m"
RED = "\033[91m"

SUBCOMMANDS = ("commit", "branch", "pr", "config")

T = TypeVar("T")


def _paint(text: str, color: str) -> str:
    if not sys.stdout.isatty():
        return text
    return f"{color}{text}{RESET}"


def _mask(secret: Optional[str]) -> Optional[str]:
    if not secret:
        return secret
    return secret[:4] + "****" if len(secret) > 8 else "****"


class CLI:
    """argparse front end dispatching to :class:`AicoWorkflow`."""

    def __init__(self) -> None:
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        common = argparse.ArgumentParser(add_help=False)
        common.add_argument("--repo-path", dest="repo_path", default=None, help="Repository path")
        common.add_argument("--provider", choices=sorted(KNOWN_MODELS), help="Model provider")
        common.add_argument("--model", help="Model id for this run")
        common.add_argument("--full", action="store_true", help="Use the non-mini model for this run")
        common.add_argument("--debug", action="store_true", help="Print debug traces")

        parser = argparse.ArgumentParser(
            prog="aico",
            description="Generate commit messages, branch names and pull request text with an LLM.",
        )
        parser.add_argument("--version", action="version", version=f"aico {__version__}")
        sub = parser.add_subparsers(dest="command")

        commit = sub.add_parser("commit", parents=[common], help="Generate and create a commit")
        commit.add_argument("-c", "--context", default="", help="Extra guidance for the model")
        commit.add_argument(
            "--no-auto-stage",
            dest="auto_stage",
            action="store_false",
            help="Do not stage all changes when nothing is staged",
        )
        commit.add_argument(
            "--merge",
            dest="merge_message",
            action="store_true",
            help="Use a plain merge message for an in-progress merge",
        )
        commit.add_argument("--dry-run", action="store_true", help="Print the message without committing")
        commit.add_argument("-y", "--yes", action="store_true", help="Commit without asking")
        commit.set_defaults(handler=self._run_commit)

        branch = sub.add_parser("branch", parents=[common], help="Suggest a branch name")
        branch.add_argument("context", help="What the branch is for")
        branch.add_argument("--create", action="store_true", help="Create and switch to the branch")
        branch.add_argument("--with-diff", action="store_true", help="Include staged changes in the prompt")
        branch.set_defaults(handler=self._run_branch)

        pr = sub.add_parser("pr", parents=[common], help="Draft a pull request title and body")
        pr.add_argument("--base", default=None, help="Base branch (default: detected)")
        pr.add_argument("-c", "--context", default="", help="Extra guidance for the model")
        pr.set_defaults(handler=self._run_pr)

        cfg = sub.add_parser("config", parents=[common], help="Show or change saved settings")
        cfg.add_argument("--set-model", help="Persist the default model")
        cfg.add_argument("--set-api-key", help="Persist an API key")
        cfg.add_argument("--show", action="store_true", help="Print the resolved configuration")
        cfg.set_defaults(handler=self._run_config)
        return parser

    def run(self, args: Optional[list[str]] = None) -> int:
        argv = list(args) if args is not None else sys.argv[1:]
        if not argv or (argv[0] not in SUBCOMMANDS and argv[0] not in ("-h", "--help", "--version")):
            argv = ["commit", *argv]
        try:
            parsed = self.parser.parse_args(argv)
        except SystemExit as e:
            return int(e.code or 0)

        try:
            return parsed.handler(parsed)
        except KeyboardInterrupt:
            print(_paint("\nCancelled.", YELLOW))
            return 130
        except AicoError as e:
            print(_paint(f"Error: {e}", RED), file=sys.stderr)
            return 1

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _load_config(parsed: argparse.Namespace) -> Config:
        overrides: dict[str, Any] = {}
        if parsed.provider:
            overrides["provider"] = parsed.provider
        if parsed.model:
            overrides["llm"] = {"model": parsed.model}
        if parsed.debug:
            overrides["debug"] = True
        config = load_config(repo_path=parsed.repo_path, overrides=overrides)
        if parsed.full:
            config = config.with_model(full_model_for(config))
        if config.debug:
            print(f"DEBUG: cli.config provider={config.provider} model={config.llm.model}")
        return config

    @staticmethod
    def _run_async(workflow: AicoWorkflow, factory: Callable[[], Awaitable[T]]) -> T:
        async def _runner() -> T:
            try:
                return await factory()
            finally:
                await workflow.aclose()

        return asyncio.run(_runner())

    @staticmethod
    def _confirm(prompt: str) -> bool:
        answer = input(prompt).strip().lower()
        return answer in ("", "y", "yes")

    # ------------------------------------------------------------------
    # Subcommands
    # ------------------------------------------------------------------
    def _run_commit(self, parsed: argparse.Namespace) -> int:
        config = self._load_config(parsed)
        workflow = AicoWorkflow(config)
        result = self._run_async(
            workflow,
            lambda: workflow.generate_commit(
                parsed.context,
                auto_stage=parsed.auto_stage,
                merge_message=parsed.merge_message,
            ),
        )
        print(_paint("Proposed commit message:", BOLD))
        print(_paint(result.message.format(), CYAN))

        if parsed.dry_run:
            print(_paint("Dry run: nothing committed.", DIM))
            return 0
        if not parsed.yes and sys.stdin.isatty():
            if not self._confirm("Commit with this message? [Y/n] "):
                print(_paint("Aborted.", YELLOW))
                return 1
        workflow.commit(result)
        print(_paint("Committed.", GREEN))
        return 0

    def _run_branch(self, parsed: argparse.Namespace) -> int:
        config = self._load_config(parsed)
        workflow = AicoWorkflow(config)
        name = self._run_async(
            workflow,
            lambda: workflow.run_branch(
                parsed.context, create=parsed.create, with_diff=parsed.with_diff
            ),
        )
        print(name)
        if parsed.create:
            print(_paint(f"Switched to new branch {name}", GREEN))
        return 0

    def _run_pr(self, parsed: argparse.Namespace) -> int:
        config = self._load_config(parsed)
        workflow = AicoWorkflow(config)
        result = self._run_async(
            workflow, lambda: workflow.run_pr(base=parsed.base, context=parsed.context)
        )
        print(_paint(f"{result.branch_name} → {result.base_branch}", DIM))
        print(result.message.format())
        return 0

    def _run_config(self, parsed: argparse.Namespace) -> int:
        config = self._load_config(parsed)
        if parsed.set_model:
            known = KNOWN_MODELS.get(config.provider, ())
            if parsed.set_model not in known:
                raise ConfigError(
                    f"Unknown model '{parsed.set_model}' for {config.provider}; "
                    f"choose one of: {', '.join(known)}"
                )
            path = save_config({"provider": config.provider, "llm": {"model": parsed.set_model}})
            print(_paint(f"Saved model {parsed.set_model} to {path}", GREEN))
        if parsed.set_api_key:
            path = save_config({"llm": {"api_key": parsed.set_api_key}})
            print(_paint(f"Saved API key to {path}", GREEN))
        if parsed.show or not (parsed.set_model or parsed.set_api_key):
            data = config.to_dict()
            data["llm"]["api_key"] = _mask(data["llm"].get("api_key"))
            print(_paint(describe_provider(config.provider), BOLD))
            print(_paint(f"Config file: {config_file_path()}", DIM))
            print(json.dumps(data, indent=2))
        return 0


def main(argv: Optional[list[str]] = None) -> int:
    return CLI().run(argv)


if __name__ == "__main__":
    sys.exit(main())
