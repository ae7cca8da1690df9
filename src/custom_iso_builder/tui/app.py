"""Textual application providing an interactive customized ISO builder."""
from __future__ import annotations

from pathlib import Path

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Button, Checkbox, Footer, Header, Input, Label, RichLog, Static

from ..builder import IsoBuildRunner, render_command_sequence
from ..config import BuildConfig, PackageSelection

OPTIONAL_PATHS = {"source", "input_iso", "output"}


class ConfigUpdated(Message):
    """Dispatched when the configuration changes."""

    def __init__(self, config: BuildConfig) -> None:
        self.config = config
        super().__init__()


class ConfigForm(Static):
    """Left-side configuration form."""

    config: reactive[BuildConfig] = reactive(BuildConfig())

    def __init__(self, config: BuildConfig) -> None:
        super().__init__(id="config-form")
        self.config = config

    def compose(self) -> ComposeResult:
        selection = self.config.package_selection
        yield Label("Build configuration", id="form-title")
        yield Input(_text(self.config.input_iso), placeholder="Input ISO (empty: download Ubuntu 20.04.1)", id="input_iso")
        yield Input(_text(self.config.output), placeholder="Output ISO (empty: timestamped in /tmp)", id="output")
        yield Input(_text(self.config.source), placeholder="Source directory to copy", id="source")
        yield Input(self.config.destination, placeholder="Destination inside the image", id="destination")
        yield Input(" ".join(selection.packages), placeholder="Packages (space separated)", id="packages")
        yield Input(_text(selection.package_file), placeholder="Package file (overrides packages)", id="package_file")
        yield Input(str(self.config.workdir), placeholder="Working directory", id="workdir")
        yield Checkbox(label="Simulate build", value=self.config.simulate, id="simulate")

    def on_input_changed(self, event: Input.Changed) -> None:  # type: ignore[override]
        field_id = event.control.id or ""
        value = event.value.strip()
        selection = self.config.package_selection
        if field_id == "packages":
            # Keep the typed list while a package file is set; the file still wins.
            package_file = selection.package_file
            self._update_config("package_selection", PackageSelection.from_options(value, package_file))
        elif field_id == "package_file":
            packages = self.query_one("#packages", Input).value
            self._update_config("package_selection", PackageSelection.from_options(packages, value or None))
        elif field_id in OPTIONAL_PATHS:
            self._update_config(field_id, Path(value) if value else None)
        elif field_id == "workdir":
            self._update_config("workdir", Path(value))
        else:
            self._update_config(field_id, value)

    def on_checkbox_changed(self, event: Checkbox.Changed) -> None:  # type: ignore[override]
        field_id = event.control.id or ""
        self._update_config(field_id, bool(event.value))

    def _update_config(self, field: str, value) -> None:
        if not field:
            return
        try:
            self.config = self.config.with_updates(**{field: value})
        except ValueError:
            self.app.bell()
            return
        self.post_message(ConfigUpdated(self.config))


def _text(value: object | None) -> str:
    return "" if value is None else str(value)


class ScriptPreview(RichLog):
    def __init__(self) -> None:
        super().__init__(id="script-preview", highlight=True)
        self.write("Command preview will appear here.")

    def update_commands(self, commands) -> None:
        self.clear()
        for command in commands:
            self.write(command)


class BuildLog(RichLog):
    def __init__(self) -> None:
        super().__init__(id="build-log", highlight=False)
        self.write("Build output will appear here.")

    def append_line(self, line: str) -> None:
        self.write(line)
        self.scroll_end(animate=False)

    def reset(self) -> None:
        self.clear()


class IsoBuilderApp(App[None]):
    """Main Textual application."""

    CSS = """
    #body {
        height: 1fr;
    }

    #config-form {
        width: 1fr;
        padding: 1;
        border: solid $surface-lighten-2;
    }

    #config-form Input,
    #config-form Checkbox {
        margin-bottom: 1;
    }

    #right-pane {
        width: 2fr;
        padding: 1;
        border: solid $surface-lighten-2;
    }

    #script-preview,
    #build-log {
        height: 1fr;
        border: round $surface-lighten-1;
        padding: 1;
    }

    #controls {
        height: auto;
        padding-top: 1;
    }

    #form-title {
        text-style: bold;
        margin-bottom: 1;
    }
    """

    BINDINGS = [
        Binding("b", "start_build", "Start build", show=True),
        Binding("e", "export_config", "Export config", show=True),
        Binding("r", "reset_form", "Reset", show=True),
    ]

    config = reactive(BuildConfig(simulate=True))

    def compose(self) -> ComposeResult:
        self.script_preview = ScriptPreview()
        self.build_log = BuildLog()
        self.form = ConfigForm(self.config)

        yield Header(show_clock=True)
        with Container(id="body"):
            with Horizontal(id="panes"):
                yield self.form
                with Vertical(id="right-pane"):
                    yield Label("Generated command script", classes="section-title")
                    yield self.script_preview
                    yield Label("Build log", classes="section-title")
                    yield self.build_log
                    with Horizontal(id="controls"):
                        yield Button("Start Build", id="start-build", variant="success")
                        yield Button("Export Config", id="export-config", variant="primary")
                        yield Button("Reset", id="reset", variant="warning")
        yield Footer()

    def on_mount(self) -> None:
        self._refresh_preview()

    def on_config_updated(self, message: ConfigUpdated) -> None:
        self.config = message.config
        self._refresh_preview()

    def _refresh_preview(self) -> None:
        commands = render_command_sequence(self.config)
        self.script_preview.update_commands(commands)

    def action_start_build(self) -> None:
        self._start_build()

    def action_export_config(self) -> None:
        self._export_config()

    def action_reset_form(self) -> None:
        self._reset_form()

    def on_button_pressed(self, event: Button.Pressed) -> None:  # type: ignore[override]
        if event.button.id == "start-build":
            self._start_build()
        elif event.button.id == "export-config":
            self._export_config()
        elif event.button.id == "reset":
            self._reset_form()

    def _reset_form(self) -> None:
        self.config = BuildConfig(simulate=True)
        new_form = ConfigForm(self.config)
        panes = self.query_one("#panes", Horizontal)
        self.form.remove()
        panes.mount(new_form, before=0)
        self.form = new_form
        self._refresh_preview()

    def _start_build(self) -> None:
        self.build_log.reset()
        runner = IsoBuildRunner(self.config)

        async def run_build() -> None:
            self.build_log.append_line("Starting build...")
            result = await runner.run(callback=self.build_log.append_line)
            if result.success:
                self.build_log.append_line("Build completed successfully.")
            else:
                self.build_log.append_line(f"Build failed with exit code {result.returncode}. See {result.log_path}")

        self.run_worker(run_build, exclusive=True, thread=False)

    def _export_config(self) -> None:
        destination = Path.cwd() / "mk-iso-config.json"
        runner = IsoBuildRunner(self.config)
        runner.export_config(destination)
        self.build_log.append_line(f"Configuration exported to {destination}")


def run() -> None:
    app = IsoBuilderApp()
    app.run()


__all__ = ["IsoBuilderApp", "run"]
