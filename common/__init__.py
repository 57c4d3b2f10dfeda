"""
Infrastructure shared by the progress engine.

- config: pydantic-settings base class
- database: Motor connection holder
- concurrency: per-key asyncio locks
- utils: response envelopes and API exceptions
"""
