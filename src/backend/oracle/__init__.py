"""
Resolution Oracle — multi-agent consensus for prediction-market questions.

Package layout:
  - agent/:    agent execution contract, consensus engine, resolution orchestrator
  - tools/:    the four scoring strategies and shared outcome helpers
  - services/: data providers, settlement layer, lifecycle event bus
  - api/:      FastAPI routes
"""
