from sweepbench.cli import run

run()
