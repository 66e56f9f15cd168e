from dynaconf import Dynaconf, Validator

settings = Dynaconf(
    settings_files=["settings.toml", ".secrets.toml"],
    environments=True,
    env_switcher="ENV_FOR_DYNACONF",
    envvar_prefix="BLOGFED",
    load_dotenv=True,
    validators=[
        Validator("DOMAIN", must_exist=True),
        Validator("DATABASE_URL", must_exist=True),
        Validator("POSTS_PER_PAGE", gte=1, default=10),
        Validator("ACCEPT_DELAY", gte=0, default=2.0),
        Validator("HTTP_TIMEOUT", gt=0, default=15.0),
        Validator("DELIVERY_CONCURRENCY", gte=1, default=4),
    ],
)
