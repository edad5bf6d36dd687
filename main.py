import asyncio

from rich.pretty import pprint

from qel import *

COMMANDS = [
    ("date", "print the current date"),
    ("uptime", "print how long the system has been running"),
]


async def callback(args):
    if args.get("--verbose"):
        pprint(args)
    process = Process(args["--command"], line_buffered=True, timeout=args.get("--timeout", 10))

    @process.on("stdout")
    def show(event):
        print(event.data)

    state = await process.run()
    if not process.success:
        pprint(state)


if __name__ == '__main__':
    asyncio.run(callback(parse(
        {
            "--command": string().required().enum(COMMANDS).description("command to run"),
            "--timeout": number().positive().description("seconds before the command is killed"),
            "--verbose": flag().count(),
            "-c": "--command",
            "-v": "--verbose",
        },
        description="Run one of a few harmless commands.",
        examples=("-c date", "--command uptime -vv"),
    )))
