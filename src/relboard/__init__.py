"""Release, pull request, issue and workflow dashboard for GitHub repositories."""
