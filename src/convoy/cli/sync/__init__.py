"""Keep the main-branch mirror worktree current."""
