"""Instance lifecycle: launch, start, stop, delete and address discovery."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..config import TimeoutsConfig
from ..context import Context
from ..exceptions import (
    AlreadyExistsError,
    CommandFailed,
    DeadlineExceeded,
    LXCAPIError,
    NotFoundError,
)
from .client import InstanceFile, LXCClient
from .filters import ListFilter, match_all, parse_host_addresses
from .launch_spec import LaunchSpec, template_name_for
from .operations import TERMINAL_STATUSES, Operation

CREATING_INSTANCE = "Creating instance"


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str
    return_code: int = 0


class InstanceLifecycle:
    """Drives instances towards Running or Absent.

    Every entry point re-reads the current state from the server before acting,
    so repeating a call, or racing another caller for the same name, converges
    instead of failing. Each entry point runs under its own deadline from
    ``TimeoutsConfig``, capped by the caller's.
    """

    def __init__(self, client: LXCClient, timeouts: TimeoutsConfig | None = None):
        self._client = client
        self._timeouts = timeouts or TimeoutsConfig()

    @property
    def client(self) -> LXCClient:
        return self._client

    def launch(self, ctx: Context, name: str, spec: LaunchSpec) -> list[str]:
        """Create, provision and start an instance; return its addresses.

        Behaves as :meth:`start` when the instance already exists.
        """
        ctx = ctx.with_timeout(self._timeouts.instance_create).with_values(instance=name)

        if self._exists(name):
            ctx.log.debug("Instance already exists")
            return self.start(ctx, name)

        pending = self._find_create_operation(name)
        if pending is not None:
            ctx.log.info("Waiting for in-flight create operation", extra={"operation": pending.id})
            self._client.wait_for_operation(ctx, "CreateInstance", lambda: pending)
        else:
            completed = spec.complete(self._client.server_info)
            body = completed.to_instances_post(name)
            ctx.log.info("Creating instance", extra={"image": str(completed.image)})
            try:
                self._client.wait_for_operation(ctx, "CreateInstance", lambda: self._client.create_instance(body))
            except AlreadyExistsError:
                ctx.log.info("Instance was created concurrently, continuing with start")
                return self.start(ctx, name)

        self._upload_templates(ctx, name, spec.instance_templates)
        for action in spec.file_actions:
            ctx.log.debug("Applying %s", action.action, extra={"path": action.path})
            self._client.create_instance_file(name, action.path, **action.file_args())
        for path, replacer in spec.replacements.items():
            self._replace_text(ctx, name, path, replacer)

        return self.start(ctx, name)

    def start(self, ctx: Context, name: str) -> list[str]:
        """Start the instance unless it is running, then wait for an address."""
        ctx = ctx.with_timeout(self._timeouts.instance_start).with_values(instance=name)

        state = self._client.get_instance_state(name)
        status = state.get("status", "")
        if status == "Running":
            ctx.log.debug("Instance is already running", extra={"status": status})
        else:
            ctx.log.info("Starting instance", extra={"status": status})
            self._client.wait_for_operation(
                ctx, "StartInstance", lambda: self._client.update_instance_state(name, "start")
            )

        return self.await_address(ctx, name)

    def stop(self, ctx: Context, name: str) -> None:
        """Force-stop the instance. Raises NotFoundError if it does not exist."""
        ctx = ctx.with_timeout(self._timeouts.instance_stop).with_values(instance=name)

        state = self._client.get_instance_state(name)
        if not state.get("pid"):
            ctx.log.debug("Instance is not running", extra={"status": state.get("status")})
            return

        ctx.log.info("Stopping instance", extra={"status": state.get("status")})
        self._client.wait_for_operation(
            ctx, "StopInstance", lambda: self._client.update_instance_state(name, "stop", force=True)
        )

    def delete(self, ctx: Context, name: str) -> None:
        """Stop and remove the instance. Succeeds if it is already gone."""
        ctx = ctx.with_timeout(self._timeouts.instance_delete).with_values(instance=name)

        try:
            self.stop(ctx, name)
            ctx.log.info("Deleting instance")
            self._client.wait_for_operation(ctx, "DeleteInstance", lambda: self._client.delete_instance(name))
        except NotFoundError:
            ctx.log.debug("Instance does not exist")

    def await_address(self, ctx: Context, name: str) -> list[str]:
        """Poll instance state until it reports a global address."""
        while True:
            try:
                addresses = parse_host_addresses(self._client.get_instance_state(name))
            except NotFoundError:
                raise
            except LXCAPIError as exc:
                ctx.log.debug("Failed to get instance state: %s", exc)
                addresses = []
            if addresses:
                ctx.log.debug("Instance has addresses", extra={"servers": addresses})
                return addresses
            try:
                ctx.sleep(self._timeouts.address_poll_interval)
            except DeadlineExceeded as exc:
                raise DeadlineExceeded(f"timed out waiting for instance {name} to report an address") from exc

    def list_instances(self, ctx: Context, *filters: ListFilter) -> list[dict[str, Any]]:
        """Instances (with state) matching every filter."""
        ctx.check()
        return [inst for inst in self._client.list_instances() if match_all(inst, filters)]

    def run_command(
        self,
        ctx: Context,
        name: str,
        command: list[str],
        environment: dict[str, str] | None = None,
    ) -> CommandResult:
        """Run a command inside the instance and collect its output.

        Raises CommandFailed on a non-zero exit code.
        """
        ctx.log.debug("Running command %s", command, extra={"instance": name})
        metadata = self._client.wait_for_operation(
            ctx, "ExecInstance", lambda: self._client.execute(name, command, environment)
        )

        output = metadata.get("output") or {}
        stdout = self._client.get_log(output["1"]) if "1" in output else ""
        stderr = self._client.get_log(output["2"]) if "2" in output else ""
        return_code = int(metadata.get("return", 0))
        if return_code != 0:
            raise CommandFailed(command, return_code, stdout, stderr)
        return CommandResult(stdout=stdout, stderr=stderr, return_code=return_code)

    def read_file(self, name: str, path: str) -> InstanceFile:
        return self._client.get_instance_file(name, path)

    def write_file(
        self,
        name: str,
        path: str,
        content: bytes | str,
        *,
        mode: int = 0o644,
        uid: int = 0,
        gid: int = 0,
    ) -> None:
        self._client.create_instance_file(name, path, content, uid=uid, gid=gid, mode=mode)

    # ── Launch helpers ──────────────────────────────────────────────

    def _exists(self, name: str) -> bool:
        try:
            self._client.get_instance_state(name)
        except NotFoundError:
            return False
        return True

    def _find_create_operation(self, name: str) -> Operation | None:
        """A pending "Creating instance" operation for ``name``, if any."""
        resource = f"/1.0/instances/{name}"
        for payload in self._client.list_operations():
            if payload.get("description") != CREATING_INSTANCE or payload.get("status") in TERMINAL_STATUSES:
                continue
            instances = (payload.get("resources") or {}).get("instances") or []
            if any(r.split("?", 1)[0] == resource for r in instances):
                return Operation.from_payload(self._client, "CreateInstance", payload)
        return None

    def _upload_templates(self, ctx: Context, name: str, templates: dict[str, str]) -> None:
        """Register create-time templates; they render on the instance's first boot."""
        if not templates:
            return

        metadata = self._client.get_instance_metadata(name)
        registered = metadata.get("templates") or {}
        for path, contents in templates.items():
            template_name = template_name_for(path)
            ctx.log.debug("Uploading instance template %s", template_name, extra={"path": path})
            self._client.create_instance_template_file(name, template_name, contents)
            registered[path] = {"when": ["create"], "create_only": True, "template": template_name, "properties": {}}
        metadata["templates"] = registered
        self._client.update_instance_metadata(name, metadata)

    def _replace_text(self, ctx: Context, name: str, path: str, replacer: dict[str, str]) -> None:
        current = self._client.get_instance_file(name, path)
        contents = current.content
        new_contents = contents
        for old, new in replacer.items():
            new_contents = new_contents.replace(old.encode(), new.encode())

        if new_contents == contents:
            ctx.log.debug("File already up to date", extra={"path": path})
            return

        ctx.log.debug("Replacing text in file", extra={"path": path})
        self._client.create_instance_file(
            name,
            path,
            new_contents,
            uid=current.uid,
            gid=current.gid,
            mode=current.mode,
            file_type=current.type,
            write_mode="overwrite",
        )
