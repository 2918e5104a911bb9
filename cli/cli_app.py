"""Interactive CLI for the Ollama agent loop."""

import asyncio
import signal
import sys

from agent.agent import AgentLoop, LoopObserver, LoopPhase, LoopState
from agent.cancellation import CancellationToken
from agent.capabilities import discover_models
from agent.config import AgentConfig
from agent.exceptions import OllamaConnectionError
from agent.models import ConnectionStatus, ModelInfo, OllamaClient
from agent.response import Message, ToolCall
from agent.session import ChatSession
from agent.utility import optimize_prompt


# ANSI color codes
RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
CYAN = "\033[36m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
RED = "\033[31m"


class CLIApp(LoopObserver):
    """Interactive REPL with streaming output."""

    def __init__(self, config: AgentConfig):
        self.config = config
        self.client = OllamaClient.from_config(config)
        self.utility_client = OllamaClient.from_config(
            config, base_url=config.utility_model.base_url
        )
        self.agent = AgentLoop(config, client=self.client, observer=self)
        self.session = ChatSession(model=config.chat_model.model_name)
        self.models: list[ModelInfo] = []
        self._printed: dict[str, int] = {}

    async def run(self):
        """Main REPL loop."""
        self._print_banner()

        if not await self._preflight_ollama():
            return

        print()
        while True:
            try:
                user_input = input(f"{BOLD}You:{RESET} ").strip()
            except (EOFError, KeyboardInterrupt):
                print(f"\n{DIM}Goodbye!{RESET}")
                break

            if not user_input:
                continue

            command = user_input.lower()
            if command in ("exit", "quit", "/exit", "/quit"):
                print(f"{DIM}Goodbye!{RESET}")
                break
            if command in ("/new", "/reset"):
                self.session = ChatSession(model=self.session.model)
                print(f"{DIM}[New conversation]{RESET}")
                continue
            if command == "/models":
                self._print_models()
                continue
            if command.startswith("/model "):
                self._select_model(user_input.split(maxsplit=1)[1].strip())
                continue
            if command.startswith("/personality"):
                self._select_personality(user_input)
                continue
            if command.startswith("/optimize "):
                print(f"{CYAN}{await self._optimize(user_input.split(maxsplit=1)[1])}{RESET}\n")
                continue
            if command in ("help", "/help"):
                self._print_help()
                continue

            await self._send(user_input)

    async def _send(self, text: str):
        """Run the agent loop; Ctrl-C cancels the run instead of quitting."""
        token = CancellationToken()
        event_loop = asyncio.get_running_loop()
        try:
            event_loop.add_signal_handler(signal.SIGINT, token.cancel)
        except (NotImplementedError, RuntimeError):
            pass

        model = self._model_info(self.session.model)
        print()
        try:
            await self.agent.run(
                self.session,
                text,
                token=token,
                supports_tools=model.has_tools if model else False,
            )
            # input() blocks the event loop, so let the title task finish first.
            await self.agent.wait_background()
        finally:
            try:
                event_loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass
        print()

    # ── LoopObserver ─────────────────────────────────────────────────

    def on_message(self, message: Message) -> None:
        if message.role == "assistant":
            self._printed[message.id] = 0
            sys.stdout.write(f"\n{BOLD}{GREEN}Assistant:{RESET} ")
            sys.stdout.flush()
        elif message.role == "tool":
            snippet = message.content[:80].replace("\n", " ")
            suffix = "..." if len(message.content) > 80 else ""
            print(f"\n{DIM}[{message.name}] {snippet}{suffix}{RESET}")

    def on_message_update(self, message: Message) -> None:
        printed = self._printed.get(message.id, 0)
        if message.content.startswith("Error:") and printed == 0:
            sys.stdout.write(f"{RED}{message.content}{RESET}")
        else:
            sys.stdout.write(message.content[printed:])
        self._printed[message.id] = len(message.content)
        sys.stdout.flush()

    def on_server_status(self, text: str | None) -> None:
        if text:
            sys.stdout.write(f"{DIM}(server: {text}){RESET} ")
            sys.stdout.flush()

    def on_tool_start(self, call: ToolCall) -> None:
        print(f"\n{YELLOW}Running {call.name}...{RESET}")

    def on_title(self, title: str) -> None:
        print(f"{DIM}[Title: {title}]{RESET}")

    def on_finish(self, state: LoopState) -> None:
        if state.phase == LoopPhase.CANCELLED:
            print(f"\n{DIM}[Interrupted]{RESET}")
        elif state.phase == LoopPhase.LOOP_EXHAUSTED:
            print(f"\n{DIM}[Stopped after {state.pass_count} passes]{RESET}")

    # ── Helpers ──────────────────────────────────────────────────────

    async def _optimize(self, text: str) -> str:
        """Rewrite a prompt on the utility model's endpoint."""
        return await optimize_prompt(
            self.utility_client, self.config.utility_model.model_name, text
        )

    def _model_info(self, name: str) -> ModelInfo | None:
        for model in self.models:
            if model.name == name or model.name.startswith(f"{name}:"):
                return model
        return None

    def _select_model(self, name: str):
        model = self._model_info(name)
        if model is None:
            print(f"{RED}[Error] Unknown model '{name}'{RESET}")
            return
        self.session.model = model.name
        badge = "agentic" if model.has_tools else "chat only"
        print(f"{DIM}[Model: {model.name} ({badge})]{RESET}")

    def _select_personality(self, user_input: str):
        parts = user_input.split(maxsplit=1)
        if len(parts) < 2:
            names = ", ".join(sorted(self.config.personalities))
            print(f"{DIM}Personalities: {names} (active: {self.config.active_personality}){RESET}")
            return
        name = parts[1].strip()
        if name not in self.config.personalities:
            print(f"{RED}[Error] Unknown personality '{name}'{RESET}")
            return
        self.config.active_personality = name
        print(f"{DIM}[Personality: {name}]{RESET}")

    def _print_models(self):
        if not self.models:
            print(f"{DIM}[No models]{RESET}")
            return
        for model in self.models:
            marker = "*" if model.name == self.session.model else " "
            badge = f"{GREEN}agentic{RESET}" if model.has_tools else f"{YELLOW}chat only{RESET}"
            print(f" {marker} {model.name} {DIM}{model.parameter_size}{RESET} [{badge}]")

    def _print_banner(self):
        print(f"""
{BOLD}{CYAN}╔══════════════════════════════════════╗
║         Ollama Agent Loop v0.1.0     ║
╚══════════════════════════════════════╝{RESET}
{DIM}Chat model: {self.config.chat_model.model_name}
Utility model: {self.config.utility_model.model_name}
Ollama: {self.config.chat_model.base_url}{RESET}
""")

    def _print_help(self):
        print(f"""
{BOLD}Commands:{RESET}
  {CYAN}/new{RESET}              — Start a new conversation
  {CYAN}/models{RESET}           — List local models
  {CYAN}/model{RESET} <name>     — Switch model
  {CYAN}/personality{RESET} [id] — Show or switch personality
  {CYAN}/optimize{RESET} <text>  — Rewrite a prompt with the utility model
  {CYAN}/help{RESET}             — Show this help
  {CYAN}/exit{RESET}             — Quit

Press Ctrl-C while the assistant is working to stop the current run.
""")

    async def _preflight_ollama(self) -> bool:
        """Probe Ollama and load the model list before starting."""
        status = await self.client.probe()
        if status != ConnectionStatus.CONNECTED:
            print(f"{RED}[Error] Cannot connect to Ollama at {self.client.base_url}{RESET}")
            print(f"{DIM}Make sure Ollama is running: ollama serve{RESET}")
            return False

        try:
            self.models = await discover_models(self.client)
        except OllamaConnectionError as e:
            print(f"{RED}[Error] {e}{RESET}")
            return False

        names = [m.name for m in self.models]
        print(f"{DIM}Available models: {', '.join(names) if names else 'none'}{RESET}")

        missing = OllamaClient.filter_missing_models([self.session.model], names)
        if missing:
            if not self.models:
                print(f"{RED}[Error] No models installed. Pull one with: ollama pull <model>{RESET}")
                return False
            self.session.model = self.models[0].name
            print(f"{YELLOW}[Model {missing[0]} not found, using {self.session.model}]{RESET}")
        model = self._model_info(self.session.model)
        if model is not None:
            self.session.model = model.name
            if not model.has_tools:
                print(f"{YELLOW}[{model.name} does not support tools; chat only]{RESET}")
        return True
