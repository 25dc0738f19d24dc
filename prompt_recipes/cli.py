#!/usr/bin/env python3
"""Ad hoc runner for the Prompt Recipes engine.

Run recipes and prompts directly from the terminal.

Usage:
    prompt-recipes status                              # Provider availability + connection test
    prompt-recipes download                            # Pull the configured model ahead of time
    prompt-recipes list                                # Recipes in RECIPES_FILE
    prompt-recipes run summarize "Long text..."        # Execute a stored recipe
    prompt-recipes run summarize "..." --stream        # Print chunks as they arrive
    prompt-recipes run describe "" --image photo.png   # Multimodal recipe
    prompt-recipes prompt "Explain asyncio in one line"
    prompt-recipes enhance "Summarize this"

Features:
- Markdown rendering of responses (rich)
- Debug mode to display the full ExecutionResult as JSON
- Errors shown with their user-facing message; retry hint only when retryable
"""

import argparse
import asyncio
import sys
from typing import Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from prompt_recipes.core.enhancer import PromptEnhancer
from prompt_recipes.core.errors import AppError, error_handler
from prompt_recipes.core.executor import PromptExecutor, build_executor
from prompt_recipes.core.recipe_store import JsonFileRecipeStore
from prompt_recipes.models.models import ExecutionResult
from prompt_recipes.utils.config import config
from prompt_recipes.utils.logger import logger

console = Console()


def _print_error(error: AppError) -> None:
    display = error_handler.create_error_display(error)
    console.print(f"[red]✗ {display.title}: {display.message}[/red]")
    console.print(f"[dim]{error.code.value}: {error.message}[/dim]")
    if error.retryable:
        console.print("[yellow]This error is temporary, retrying may help.[/yellow]")


def _print_result(result: ExecutionResult, debug: bool, render: bool = True) -> None:
    if debug:
        console.print("[bold cyan]Debug Mode: Full Result[/bold cyan]")
        console.print_json(data=result.model_dump())
    if render and result.response:
        console.print(Markdown(result.response))
    console.print(f"[dim]{result.execution_time} ms, ~{result.tokens_used} tokens[/dim]")


async def _status(executor: PromptExecutor) -> int:
    client = executor.client
    console.print(f"Provider: [bold]{client.provider.name}[/bold] (model: {client.provider.model})")
    console.print(f"Availability: {(await client.provider.availability()).value}")
    result = await executor.test_connection()
    if result.available:
        console.print(f"[green]✓ Connection OK[/green] features: {', '.join(result.capabilities.features)}")
        return 0
    console.print(f"[red]✗ Connection failed: {result.error}[/red]")
    return 1


async def _download(executor: PromptExecutor) -> int:
    with console.status("Downloading model..."):
        result = await executor.client.trigger_download()
    if result.success:
        console.print(f"[green]✓ Model ready ({result.status.value})[/green]")
        return 0
    console.print(f"[red]✗ Download failed ({result.status.value}): {result.error}[/red]")
    return 1


def _list(store: JsonFileRecipeStore) -> int:
    recipes = store.list()
    if not recipes:
        console.print(f"[yellow]No recipes found in {store.path}[/yellow]")
        return 0
    table = Table("ID", "Name", "Tags", "Pinned")
    for recipe in recipes:
        table.add_row(recipe.id, recipe.name, ", ".join(recipe.tags), "📌" if recipe.pinned else "")
    console.print(table)
    return 0


async def _run(executor: PromptExecutor, args: argparse.Namespace) -> int:
    options = executor.default_options
    if args.no_guide:
        options = options.model_copy(update={"guide": ""})

    if not args.stream and not args.image:
        # Lookup, execution and last-used stamping in one call
        result = await executor.execute_stored_recipe(args.recipe_id, args.text, options)
        _print_result(result, args.debug)
        return 0

    recipe = executor.store.get(args.recipe_id)
    if recipe is None:
        console.print(f"[red]✗ Recipe not found: {args.recipe_id}[/red]")
        return 1

    if args.stream:
        if args.image:
            stream = executor.execute_recipe_multimodal_streaming(recipe, args.text, args.image, options)
        else:
            stream = executor.execute_recipe_streaming(recipe, args.text, options)
        async with stream:
            async for chunk in stream:
                console.print(chunk, end="", markup=False, highlight=False)
        console.print()
        _print_result(stream.result, args.debug, render=False)
    else:
        result = await executor.execute_recipe_multimodal(recipe, args.text, args.image, options)
        _print_result(result, args.debug)

    executor.store.save(recipe.with_last_used())
    return 0


async def _prompt(executor: PromptExecutor, args: argparse.Namespace) -> int:
    result = await executor.execute_custom_prompt(args.text)
    _print_result(result, args.debug)
    return 0


async def _enhance(executor: PromptExecutor, args: argparse.Namespace) -> int:
    result = await PromptEnhancer(executor.client).enhance_prompt(args.text)
    if not result.success:
        console.print(f"[red]✗ Enhancement failed: {result.error}[/red]")
        return 1
    console.print(f"[bold]Enhanced prompt:[/bold]\n{result.enhanced_prompt}")
    for improvement in result.improvements:
        console.print(f"  • {improvement}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="prompt-recipes", description="Run prompt recipes against a local or hosted model")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show provider availability and run a connection test")
    sub.add_parser("download", help="Download the configured model ahead of first use")
    sub.add_parser("list", help="List recipes in RECIPES_FILE")

    run = sub.add_parser("run", help="Execute a stored recipe")
    run.add_argument("recipe_id")
    run.add_argument("text", help="User input (may be empty with --image)")
    run.add_argument("--stream", action="store_true", help="Print the response as it is generated")
    run.add_argument("--image", help="Image file, URL or data URL for multimodal recipes")
    run.add_argument("--no-guide", action="store_true", help="Do not prepend the stored guide")
    run.add_argument("--debug", action="store_true", help="Display the full result as JSON")

    prompt = sub.add_parser("prompt", help="Execute an ad hoc prompt")
    prompt.add_argument("text")
    prompt.add_argument("--debug", action="store_true")

    enhance = sub.add_parser("enhance", help="Rewrite a prompt to be clearer and more specific")
    enhance.add_argument("text")
    return parser


async def _dispatch(args: argparse.Namespace) -> int:
    store = JsonFileRecipeStore(config.RECIPES_FILE, config.GUIDE_FILE)
    if args.command == "list":
        return _list(store)

    executor = build_executor(config, store=store)
    if args.command == "status":
        return await _status(executor)
    if args.command == "download":
        return await _download(executor)
    if args.command == "run":
        return await _run(executor, args)
    if args.command == "prompt":
        return await _prompt(executor, args)
    return await _enhance(executor, args)


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_dispatch(args))
    except AppError as e:
        _print_error(e)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
