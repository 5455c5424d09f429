import csv
import json
from pathlib import Path

from dealerops.schemas import Row


def _read_jsonl(path: Path) -> list[Row]:
    rows: list[Row] = []
    with path.open("r", encoding="utf-8") as infile:
        for line in infile:
            line = line.strip()
            if not line:
                continue
            rows.append(json.loads(line))
    return rows


def _read_csv(path: Path) -> list[Row]:
    with path.open("r", encoding="utf-8-sig", newline="") as infile:
        return [
            {name.strip(): (value if value != "" else None) for name, value in row.items() if name}
            for row in csv.DictReader(infile)
        ]


def read_rows(input_path: Path) -> list[Row]:
    if not input_path.exists():
        raise FileNotFoundError(f"input file not found: {input_path}")

    suffix = input_path.suffix.lower()
    if suffix == ".csv":
        return _read_csv(input_path)
    if suffix == ".json":
        with input_path.open("r", encoding="utf-8") as infile:
            payload = json.load(infile)
        if not isinstance(payload, list):
            raise ValueError(f"expected a JSON array of rows in {input_path}")
        return payload
    return _read_jsonl(input_path)


def write_json(path: Path, payload: dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as outfile:
        json.dump(payload, outfile, indent=2, sort_keys=True, default=str)
        outfile.write("\n")
