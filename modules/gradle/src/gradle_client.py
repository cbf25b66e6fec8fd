from __future__ import annotations

from typing import Optional

from toolbox.engine import CacheVolume, Container, HostDirectory, container

DEFAULT_GRADLE_VERSION = "latest"


class Gradle:
    """Builder for gradle containers.

    Each operation returns a container; nothing runs until an engine
    evaluates it.
    """

    def __init__(self) -> None:
        self.version = ""
        self.image = ""
        self.directory: Optional[HostDirectory] = None
        self.wrapper = False

    def with_directory(self, src: HostDirectory) -> "Gradle":
        """Mount the application directory that will be built."""
        self.directory = src
        return self

    def with_wrapper(self) -> "Gradle":
        """Use ``gradlew`` instead of the gradle installed in the image.

        With the wrapper neither a version nor an image needs to be set.
        """
        self.wrapper = True
        return self

    def from_version(self, version: str) -> "Gradle":
        self.version = version
        return self

    def from_image(self, image: str) -> "Gradle":
        """Set the base image. Without ``with_wrapper`` it must have gradle installed."""
        self.image = image
        return self

    def container(self) -> Container:
        return self._build_container()

    def build(self) -> Container:
        return self._build_container().with_exec(["clean", "build", "--no-daemon"], use_entrypoint=True)

    def test(self) -> Container:
        return self._build_container().with_exec(["clean", "test", "--no-daemon"], use_entrypoint=True)

    def task(self, task: str, *args: str) -> Container:
        return self._build_container().with_exec([task, *args], use_entrypoint=True)

    def _build_container(self) -> Container:
        image = self.image
        if not image:
            image = f"gradle:{self.version or DEFAULT_GRADLE_VERSION}"

        ctr = (
            container()
            .from_(image)
            .with_workdir("/app")
            .with_mounted_cache("/root/.gradle/caches", CacheVolume("gradle-caches"))
        )
        if self.directory is not None:
            ctr = ctr.with_mounted_directory("/app", self.directory)

        if self.wrapper:
            ctr = ctr.with_mounted_cache("/root/.gradle/wrapper", CacheVolume("gradle-wrapper"))
            return ctr.with_entrypoint(["./gradlew"])

        return ctr.with_entrypoint(["gradle"])
