from disposable.runtime.docker_client import ContainerHandle, ContainerSpec, DockerRuntimeClient

__all__ = ["ContainerHandle", "ContainerSpec", "DockerRuntimeClient"]
