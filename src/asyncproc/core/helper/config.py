from pathlib import Path
from typing import Optional, Type, TypeVar, Iterable, Sequence
from typing import cast

from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
    YamlConfigSettingsSource,
    JsonConfigSettingsSource,
    DotEnvSettingsSource,
    CliSettingsSource,
)

T = TypeVar("T", bound=BaseSettings)


class ConfigHelper:
    @staticmethod
    def config_source(settings_cls: type[BaseSettings], file: str | Path):
        f = Path(file)
        encoding = "utf-8"

        for matching in [f.suffix, f.name]:
            match matching:
                case ".toml":
                    return TomlConfigSettingsSource(settings_cls, toml_file=f)
                case ".yml" | ".yaml":
                    return YamlConfigSettingsSource(
                        settings_cls, yaml_file=f, yaml_file_encoding=encoding
                    )
                case ".json":
                    return JsonConfigSettingsSource(
                        settings_cls, json_file=f, json_file_encoding=encoding
                    )
                case ".env":
                    return DotEnvSettingsSource(
                        settings_cls,
                        env_file=f,
                        env_file_encoding=encoding,
                        case_sensitive=False,
                    )

        raise ValueError(
            f"config: '{file}' must end with one of the extensions: toml, yaml, yml, json, env"
        )

    @staticmethod
    def load(
        settings_cls: Type[T],
        config_files: Optional[Iterable[str | Path]] = None,
        env_prefix: str = "",
        case_sensitive: bool = False,
        cli_parse_args: bool | Sequence[str] = False,
    ) -> T:
        """
        Собрать настройки из всех источников.

        cli_parse_args: False - CLI не читаем, True - sys.argv, список - эти аргументы.
        """
        files = list(config_files or [])

        class ConfigWithSources(settings_cls):  # type: ignore
            model_config = SettingsConfigDict(
                env_prefix=env_prefix,
                case_sensitive=case_sensitive,
                extra="ignore",
            )

            @classmethod
            def settings_customise_sources(
                cls,
                settings_cls: type[BaseSettings],
                init_settings: PydanticBaseSettingsSource,
                env_settings: PydanticBaseSettingsSource,
                dotenv_settings: PydanticBaseSettingsSource,
                file_secret_settings: PydanticBaseSettingsSource,
            ) -> tuple[PydanticBaseSettingsSource, ...]:
                """
                Порядок источников настроек (от высшего приоритета к низшему).
                """
                sources = []

                # CLI аргументы (высший приоритет)
                if cli_parse_args is not False:
                    sources.append(
                        CliSettingsSource(
                            settings_cls,
                            cli_parse_args=cli_parse_args,
                            cli_prog_name="asyncproc",
                        ),
                    )

                sources.append(file_secret_settings)

                # переменные окружения
                sources.append(env_settings)

                # конфигурационные файлы (включая .env файлы)
                sources.extend(
                    ConfigHelper.config_source(settings_cls, f) for f in files
                )

                sources.append(dotenv_settings)

                # значения по умолчанию из init
                sources.append(init_settings)

                return tuple(sources)

        return cast(T, ConfigWithSources())

    @staticmethod
    def typical_config_files():
        return [
            ".env",
            "config.json",
            "config.yml",
            "config.toml",
        ]
