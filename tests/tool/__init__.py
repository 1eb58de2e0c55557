"""Test helpers for kubeapply tools."""

from kubeapply.command import Command, run

KUBEAPPLY_DIFF_BIN = "kubeapply-diff"


async def run_command(args: list[str], env: dict[str, str] | None = None) -> str:
    output = await run(Command([KUBEAPPLY_DIFF_BIN] + args, env=env))
    return output.decode("utf-8")
