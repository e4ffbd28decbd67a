"""
Application configuration loaded from environment variables / .env file.
"""

from dataclasses import dataclass

from pydantic_settings import BaseSettings


@dataclass(frozen=True)
class NodeConfig:
    """Immutable inputs handed to the node at construction."""

    ip: str
    xmlrpc_port: int
    password: str
    timeout_millis: int
    frame_id: str
    driver: str = "twin"
    twin_frame_rate: float = 10.0


class Settings(BaseSettings):
    # O3D3xx device connection
    device_driver: str = "twin"
    device_ip: str = "192.168.0.69"
    xmlrpc_port: int = 80
    device_password: str = ""
    timeout_millis: int = 500
    frame_id: str = "o3d3xx_link"
    twin_frame_rate: float = 10.0
    debug: bool = False

    # API server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def node_config(self) -> NodeConfig:
        return NodeConfig(
            ip=self.device_ip,
            xmlrpc_port=self.xmlrpc_port,
            password=self.device_password,
            timeout_millis=self.timeout_millis,
            frame_id=self.frame_id,
            driver=self.device_driver.lower(),
            twin_frame_rate=self.twin_frame_rate,
        )


settings = Settings()
