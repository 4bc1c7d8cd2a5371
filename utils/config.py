from __future__ import annotations
import dataclasses
from typing import Optional

@dataclasses.dataclass
class LLM:
    model: Optional[str] = None
    temperature: float = 0.7
    max_tokens: Optional[int] = None

@dataclasses.dataclass
class Agent:
    max_iterations: int = 10
    system_prompt: Optional[str] = None

@dataclasses.dataclass
class Server:
    host: str = "127.0.0.1"
    port: int = 8000

@dataclasses.dataclass
class Config:
    llm: LLM = dataclasses.field(default_factory=LLM)
    agent: Agent = dataclasses.field(default_factory=Agent)
    server: Server = dataclasses.field(default_factory=Server)
