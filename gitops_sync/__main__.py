"""Run the gitops-sync command line tool with `python -m gitops_sync`."""

from gitops_sync.tool.gitops_sync import main

main()
