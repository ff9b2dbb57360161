"""
Static catalog of supported games and the container images that run them.

The "custom" entry is the generic adapter: it has no fixed ports and runs a
user-supplied startup script instead.
"""

from dataclasses import dataclass, field
from typing import Literal

Protocol = Literal["tcp", "udp"]

CUSTOM_GAME_KEY = "custom"


@dataclass(frozen=True)
class PortSpec:
    container: int
    proto: Protocol = "tcp"

    @property
    def docker_key(self) -> str:
        return f"{self.container}/{self.proto}"


@dataclass(frozen=True)
class GameImage:
    key: str
    name: str
    image: str
    ports: tuple[PortSpec, ...] = ()
    env_defaults: dict[str, str] = field(default_factory=dict)
    data_path: str = "/data"
    memory_mb: int = 2048
    cpu_shares: int = 1024

    @property
    def is_custom(self) -> bool:
        return self.key == CUSTOM_GAME_KEY


def udp(*ports: int) -> tuple[PortSpec, ...]:
    return tuple(PortSpec(p, "udp") for p in ports)


GAMES: list[GameImage] = [
    GameImage(
        key="minecraft-java",
        name="Minecraft (Java)",
        image="itzg/minecraft-server:latest",
        ports=(PortSpec(25565, "tcp"),),
        env_defaults={"EULA": "TRUE", "MEMORY": "2G", "TYPE": "VANILLA", "VERSION": "LATEST"},
        data_path="/data",
        memory_mb=3072,
    ),
    GameImage(
        key="minecraft-bedrock",
        name="Minecraft (Bedrock)",
        image="itzg/minecraft-bedrock-server:latest",
        ports=udp(19132),
        env_defaults={"EULA": "TRUE"},
        data_path="/data",
    ),
    GameImage(
        key="7dtd",
        name="7 Days to Die",
        image="didstopia/7dtd-server:latest",
        ports=udp(26900, 26901),
        data_path="/steamcmd/7dtd",
        memory_mb=8192,
        cpu_shares=2048,
    ),
    GameImage(
        key="valheim",
        name="Valheim",
        image="lloesche/valheim-server:latest",
        ports=udp(2456, 2457),
        env_defaults={
            "SERVER_NAME": "SpinUp Valheim",
            "SERVER_PASS": "changeme",
            "SERVER_PUBLIC": "1",
        },
        data_path="/config",
        memory_mb=4096,
    ),
    GameImage(
        key="factorio",
        name="Factorio",
        image="factoriotools/factorio:stable",
        ports=udp(34197),
        data_path="/factorio",
    ),
    GameImage(
        key="ark",
        name="ARK: Survival Evolved",
        image="hermsi/ark-server:latest",
        ports=udp(7777, 27015),
        data_path="/ark",
        memory_mb=8192,
        cpu_shares=2048,
    ),
    GameImage(
        key="palworld",
        name="Palworld",
        image="thijsvanloef/palworld-server-docker:latest",
        ports=udp(8211),
        env_defaults={
            "PUID": "1000",
            "PGID": "1000",
            "PORT": "8211",
            "PLAYERS": "16",
            "MULTITHREADING": "true",
        },
        data_path="/palworld",
        memory_mb=8192,
        cpu_shares=2048,
    ),
    GameImage(
        key="rust",
        name="Rust",
        image="didstopia/rust-server:latest",
        ports=(PortSpec(28015, "udp"), PortSpec(28016, "tcp")),
        env_defaults={
            "RUST_SERVER_STARTUP_ARGUMENTS": "-batchmode -load +server.secure 1",
            "RUST_SERVER_NAME": "SpinUp Rust Server",
        },
        data_path="/steamcmd/rust",
        memory_mb=8192,
        cpu_shares=2048,
    ),
    GameImage(
        key="zomboid",
        name="Project Zomboid",
        image="wolveix/project-zomboid:latest",
        ports=udp(16261, 16262),
        data_path="/server-data",
        memory_mb=4096,
    ),
    GameImage(
        key="terraria",
        name="Terraria (TShock)",
        image="beardedio/terraria:latest",
        ports=(PortSpec(7777, "tcp"),),
        data_path="/config",
        memory_mb=1024,
    ),
    GameImage(
        key="cs2",
        name="Counter-Strike 2",
        image="cm2network/cs2:latest",
        ports=udp(27015),
        env_defaults={"SRCDS_TOKEN": "0", "CS2_SERVERNAME": "SpinUp CS2 Server"},
        data_path="/home/steam/cs2-dedicated",
        memory_mb=4096,
    ),
    GameImage(
        key="satisfactory",
        name="Satisfactory",
        image="wolveix/satisfactory-server:latest",
        ports=udp(7777, 15000, 15777),
        data_path="/config",
        memory_mb=8192,
        cpu_shares=2048,
    ),
    GameImage(
        key="tf2",
        name="Team Fortress 2",
        image="cm2network/tf2:latest",
        ports=(PortSpec(27015, "udp"), PortSpec(27015, "tcp"), PortSpec(27020, "udp")),
        env_defaults={"SRCDS_TOKEN": "0"},
        data_path="/home/steam/tf2-dedicated",
    ),
    GameImage(
        key="squad",
        name="Squad",
        image="cm2network/squad:latest",
        ports=(
            PortSpec(7787, "udp"),
            PortSpec(7788, "udp"),
            PortSpec(27165, "udp"),
            PortSpec(27165, "tcp"),
            PortSpec(21114, "tcp"),
        ),
        data_path="/home/steam/squad-dedicated",
        memory_mb=8192,
    ),
    GameImage(
        key="mordhau",
        name="Mordhau",
        image="cm2network/mordhau:latest",
        ports=udp(7777, 15000, 27015),
        data_path="/home/steam/mordhau-dedicated",
        memory_mb=4096,
    ),
    GameImage(
        key="dst",
        name="Don't Starve Together",
        image="dstacademy/dontstarvetogether:latest",
        ports=udp(10999, 27015),
        env_defaults={
            "SERVER_NAME": "SpinUp DST Server",
            "SERVER_PASSWORD": "",
            "MAX_PLAYERS": "6",
        },
        data_path="/data",
    ),
    GameImage(
        key="starbound",
        name="Starbound",
        image="didstopia/starbound-server:latest",
        ports=(PortSpec(21025, "tcp"),),
        data_path="/steamcmd/starbound",
    ),
    GameImage(
        key="vrising",
        name="V Rising",
        image="didstopia/vrising-server:latest",
        ports=(PortSpec(9876, "udp"), PortSpec(9876, "tcp"), PortSpec(9877, "udp")),
        env_defaults={
            "SERVER_NAME": "SpinUp V Rising",
            "WORLD_NAME": "world1",
            "GAME_SETTINGS_PRESET": "StandardPvP",
        },
        data_path="/data",
        memory_mb=4096,
    ),
    GameImage(
        key=CUSTOM_GAME_KEY,
        name="Custom Server (Advanced)",
        image="spinup/generic-server:latest",
        data_path="/data",
    ),
]

GAMES_BY_KEY: dict[str, GameImage] = {game.key: game for game in GAMES}


def get_game(key: str) -> GameImage | None:
    return GAMES_BY_KEY.get(key)
