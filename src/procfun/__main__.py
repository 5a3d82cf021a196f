import sys

from procfun.child import DISPATCH_MARKER, EXIT_BAD_ARGUMENTS, bootstrap

bootstrap()
sys.stderr.write(
    f"python -m procfun is the task dispatcher entry point: python -m procfun {DISPATCH_MARKER} TASK_ID FRAME\n"
    "Use `python -m pfr` to list or call tasks.\n"
)
raise SystemExit(EXIT_BAD_ARGUMENTS)
