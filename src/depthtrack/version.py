from importlib.metadata import PackageNotFoundError, version


def get_versions() -> dict[str, str]:
    try:
        return {"version": version("depthtrack")}
    except PackageNotFoundError:
        return {"version": "unknown"}
