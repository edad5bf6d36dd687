"""
python -m qel: print the shell code enabling completion for qel-based scripts.

    python -m qel --shell zsh my-script other-script > ~/.zsh/completion/_my-script
    eval "$(python -m qel my-script)"
"""
import sys
import time

from .arguments import Parser
from .completion import DEFAULT_FUNCTION_NAME, script
from .validators import flag, string


def _check_function_name(value):
    if not value.startswith("_"):
        raise ValueError('function name should start with "_"')


def main(argv=None, /):
    parser = Parser(
        {
            "--shell": string("bash")
                .enum(["bash", "zsh"])
                .description("shell to generate completion for")
                .env("QEL_COMPLETION_SHELL")
                .value_text("NAME"),
            "--function-name": string(DEFAULT_FUNCTION_NAME)
                .env("QEL_COMPLETION_FUNCTION_NAME")
                .value_text("NAME")
                .description("name of the shell function used for completion")
                .custom(_check_function_name),
            "--randomize-function-name": flag(True)
                .env("QEL_COMPLETION_RANDOMIZE_FUNCTION_NAME")
                .description("if set, a random suffix is added at the end of the function name"),
            "--function": flag(True)
                .env("QEL_COMPLETION_ENABLE_FUNCTION")
                .description("if set, output the completion function"),
            "--setup": flag(True)
                .env("QEL_COMPLETION_ENABLE_SETUP")
                .description("if set, output the completion setup of each command"),
            "-s": "--shell",
        },
        argv=sys.argv[1:] if argv is None else argv,
        parse=False,
        script_name="python -m qel",
        description="Output shell completion code to stdout for the given commands.",
        examples=(
            "my-script",
            "-s zsh my-script other-script",
            "--function-name _my_completion --no-randomize-function-name my-script",
            "--no-setup my-script",
        ),
    )
    args = parser.parse()

    if not args["_"]:
        parser.usage("At least one command should be given")
        return 2
    if not args.get("--setup") and not args.get("--function"):
        parser.usage("At least one of (--function, --setup) should be set")
        return 2

    function_name = args["--function-name"]
    if args.get("--randomize-function-name"):
        function_name += f"_{time.time_ns() // 1_000_000}"

    sys.stdout.write(script(
        args["--shell"],
        args["_"],
        function_name,
        function=bool(args.get("--function")),
        setup=bool(args.get("--setup")),
    ))
    return 0


if __name__ == "__main__":
    sys.exit(main())
