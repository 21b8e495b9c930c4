# Root conftest: puts the repository root on sys.path so `ops`, `self_healing`
# and `tools` import without an editable install.
