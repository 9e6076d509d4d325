from agentwatch.cli import app

app()
