# Copyright 2026. Browser-automation driver stage.

from conductor.core.process import IOMode, ProcessSlots, SupervisedProcess
from .base import StageChannel

STAGE = "driver"


class DriverStage:
    """Runs the webdriver binary on the runner config's port in the `driver` slot.

    The driver runs until killed, so a success result is emitted as soon as
    it spawns. Its exit is reported afterwards unless the pipeline stopped it.
    """

    name = STAGE

    def __init__(self, slots: ProcessSlots, driver: str):
        self.slots = slots
        self.driver = driver

    def start(self, port: int, channel: StageChannel, executable: str = "") -> SupervisedProcess:
        owner: list[SupervisedProcess] = []

        def on_exit(code: int) -> None:
            if owner and owner[0].terminated:
                return
            if code == 0:
                channel.emit(True, "driver exited")
            else:
                channel.emit(False, f"driver exited with code {code}", code)

        def spawn() -> SupervisedProcess:
            return self.slots.supervisor.start(
                STAGE, executable or self.driver, ["--port", str(port)],
                io_mode=IOMode.INHERIT, on_exit=on_exit,
            )

        handle = self.slots.supersede(STAGE, spawn)
        owner.append(handle)
        channel.emit(True)
        return handle
