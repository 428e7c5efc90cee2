"""Tab-separated feature tables.

Column order is fixed; downstream tools read the table by position as well
as by name. Floats are written with their shortest round-trip repr, so
re-reading a table recovers every value exactly.

Envelope column: ``"index,intensity;index,intensity;..."`` of the summed
envelope, isotope index relative to the monoisotopic peak.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Tuple, Union

from ..features.cluster import FeatureCluster, ScoreKind

logger = logging.getLogger(__name__)

SCORE_COLUMNS = [kind.column_name for kind in ScoreKind]

FEATURE_TABLE_COLUMNS = (
    [
        'FeatureID', 'MinScan', 'MaxScan', 'MinCharge', 'MaxCharge', 'MonoMass',
        'RepScan', 'RepCharge', 'RepMz', 'Abundance',
    ]
    + SCORE_COLUMNS
    + ['Probability', 'GoodEnough', 'Envelope']
)


@dataclass
class FeatureRecord:
    """One row of a feature table."""
    feature_id: int
    min_scan: int
    max_scan: int
    min_charge: int
    max_charge: int
    mono_mass: float
    rep_scan: int
    rep_charge: int
    rep_mz: float
    abundance: float
    scores: Dict[str, float] = field(default_factory=dict)
    probability: float = 0.0
    good_enough: bool = False
    envelope: List[Tuple[int, float]] = field(default_factory=list)


def format_envelope(cluster: FeatureCluster) -> str:
    iso = cluster.isotope_list
    return ';'.join(
        f"{int(index)},{float(intensity)!r}"
        for index, intensity in zip(iso.index, cluster.summed_envelope)
    )


def parse_envelope(text: str) -> List[Tuple[int, float]]:
    if not isinstance(text, str) or not text:
        return []
    pairs = []
    for item in text.split(';'):
        index, intensity = item.split(',')
        pairs.append((int(index), float(intensity)))
    return pairs


def feature_to_row(cluster: FeatureCluster, feature_id: int) -> list:
    """Table row of a scored cluster, in column order."""
    return (
        [
            int(feature_id),
            int(cluster.min_scan_num),
            int(cluster.max_scan_num),
            int(cluster.min_charge),
            int(cluster.max_charge),
            float(cluster.representative_mass),
            int(cluster.representative_scan_num),
            int(cluster.representative_charge),
            float(cluster.representative_mz),
            float(cluster.abundance),
        ]
        + [float(v) for v in cluster.scores]
        + [float(cluster.probability), bool(cluster.good_enough), format_envelope(cluster)]
    )


class FeatureTableWriter:
    """Streams features to a TSV file, appending on every ``flush``.

    Parameters
    ----------
    path : str or Path
        Output file (overwritten)
    buffer_size : int
        Rows kept in memory before an automatic flush
    """

    def __init__(self, path: Union[str, Path], buffer_size: int = 10000):
        self.path = Path(path)
        self.buffer_size = buffer_size
        self.n_written = 0
        self._rows: List[list] = []
        self._header_written = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def write(self, cluster: FeatureCluster) -> int:
        """Queue ``cluster`` under the next feature id; returns that id."""
        feature_id = self.n_written + len(self._rows) + 1
        cluster.feature_id = feature_id
        self._rows.append(feature_to_row(cluster, feature_id))
        if len(self._rows) >= self.buffer_size:
            self.flush()
        return feature_id

    def flush(self):
        import pandas as pd

        if not self._rows and self._header_written:
            return
        df = pd.DataFrame(self._rows, columns=FEATURE_TABLE_COLUMNS)
        df.to_csv(
            self.path,
            sep='\t',
            index=False,
            mode='a' if self._header_written else 'w',
            header=not self._header_written,
        )
        self._header_written = True
        self.n_written += len(self._rows)
        self._rows.clear()

    def close(self):
        self.flush()
        logger.info(f"Wrote {self.n_written:,} features to {self.path.name}")


def write_feature_table(path: Union[str, Path], clusters: Iterable[FeatureCluster]) -> int:
    """Write ``clusters`` with ids 1..n; returns the number written."""
    with FeatureTableWriter(path) as writer:
        for cluster in clusters:
            writer.write(cluster)
    return writer.n_written


def read_feature_table(path: Union[str, Path]) -> List[FeatureRecord]:
    """Parse a feature table written by ``FeatureTableWriter``."""
    import pandas as pd

    df = pd.read_csv(path, sep='\t', float_precision='round_trip', keep_default_na=False)
    missing = [c for c in FEATURE_TABLE_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Not a feature table, missing columns: {missing}")

    records = []
    for row in df.itertuples(index=False):
        values = row._asdict()
        records.append(FeatureRecord(
            feature_id=int(values['FeatureID']),
            min_scan=int(values['MinScan']),
            max_scan=int(values['MaxScan']),
            min_charge=int(values['MinCharge']),
            max_charge=int(values['MaxCharge']),
            mono_mass=float(values['MonoMass']),
            rep_scan=int(values['RepScan']),
            rep_charge=int(values['RepCharge']),
            rep_mz=float(values['RepMz']),
            abundance=float(values['Abundance']),
            scores={name: float(values[name]) for name in SCORE_COLUMNS},
            probability=float(values['Probability']),
            good_enough=str(values['GoodEnough']) == 'True',
            envelope=parse_envelope(values['Envelope']),
        ))
    return records
