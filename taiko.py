import asyncio
import sys
from pathlib import Path

import yaml

from taiko.taiko_runtime import ScriptRunner
from taiko.taiko_printer import Printer
from taiko.taiko_transformer import TaikoParser, ParseError
from taiko.taiko_serialize import deserialize, detect_format, to_builtin, TreeFormatError

TREE_SUFFIXES = ('.json', '.yaml', '.yml')


# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)


def print_side_effects(result):
    for effect in result.side_effects:
        match effect.get('topics'):
            case ['stdout']:
                print(effect.get('message', ''), end=effect.get('end', '\n'))
            case ['assert']:
                print(effect.get('message', ''), file=sys.stderr)


def _read(file_path: str) -> str:
    try:
        return Path(file_path).read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)


async def run_script_file(file_path: str):
    """Run a taiko script (or serialized node tree) and exit with appropriate status."""
    runner = ScriptRunner()
    source = _read(file_path)
    if file_path.lower().endswith(TREE_SUFFIXES):
        try:
            tree = deserialize(source, fmt=detect_format(file_path))
        except TreeFormatError as e:
            print(f"Error: {e}", file=sys.stderr)
            raise SystemExit(1)
        result = await runner.handle_tree(tree)
    else:
        result = await runner.handle_script(source)
    print_side_effects(result)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)


def dump_ast(file_path: str):
    """Print the parsed node tree of a script as YAML."""
    source = _read(file_path)
    try:
        tree = TaikoParser().parse(source)
    except ParseError as e:
        print(f"ParseError: {e.message} (line {e.line}, col {e.col})", file=sys.stderr)
        raise SystemExit(1)
    print(yaml.safe_dump(to_builtin(tree, include_loc=False), sort_keys=False), end="")


def needs_more_input(parser: TaikoParser, source: str) -> bool:
    """True when `source` only fails to parse because it ends too early."""
    try:
        parser.parse(source)
    except ParseError as e:
        return e.at_end
    return False


async def main():
    """Run a script file when provided, otherwise start the interactive REPL."""
    if len(sys.argv) > 1:
        arg = sys.argv[1]
        if arg == "--ast":
            if len(sys.argv) < 3:
                print("usage: taiko.py --ast FILE", file=sys.stderr)
                raise SystemExit(2)
            dump_ast(sys.argv[2])
            return
        # Treat argv[1] as a script file when it's not a flag; run_script_file handles missing files
        if not arg.startswith("-"):
            await run_script_file(arg)
            return

    print("taiko REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit.")

    runner = ScriptRunner()
    printer = Printer()
    parser = TaikoParser()
    runner._initialize()
    pending: list[str] = []

    while True:
        try:
            raw = await ainput("* " if pending else ">> ")
            if raw == "":
                raise EOFError
            line = raw.rstrip("\r\n")

            if not pending:
                line = line.strip()
                if not line:
                    continue
                if line == "exit":
                    break

            pending.append(line)
            source = "\n".join(pending)
            if needs_more_input(parser, source):
                continue
            pending.clear()

            result = await runner.handle_script(source)

            if result.status == 'error':
                print(result.format_error(), file=sys.stderr)
                continue

            print_side_effects(result)
            print(f"=> {printer.pformat(result.value)}")

        except EOFError:
            print("\nExiting.")
            break


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")
