"""
Urban Growth Report
===================

Year-over-year urban area table and summary statistics relative to the
first (base) year.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

import pandas as pd

from urbangrowth.utils.metrics import NOT_APPLICABLE


@dataclass
class YearResult:
    """Urban area of one classified year and, while it is kept, its class map GeoTIFF."""
    year: int
    urban_area_km2: float
    path: Optional[str] = None


@dataclass
class ReportRow:
    year: int
    urban_area_km2: float
    percent_of_region: float
    growth_km2: float
    growth_pct: Optional[float]


@dataclass
class GrowthSummary:
    base_year: int
    final_year: int
    base_area_km2: float
    final_area_km2: float
    total_growth_km2: float
    total_growth_pct: Optional[float]
    average_annual_growth_km2: Optional[float]
    average_annual_growth_rate_pct: Optional[float]


def _percent(part: float, whole: float) -> Optional[float]:
    return part / whole * 100 if whole else None


def _fmt(value: Optional[float], digits: int, suffix: str = '') -> str:
    return NOT_APPLICABLE if value is None else f"{value:.{digits}f}{suffix}"


class GrowthReport:
    """
    Growth statistics for a set of year results.

    Args:
        results: Year results in any order
        region_area_km2: Total area of the region
        region_code: Short region name used in headers and CSV columns
    """

    def __init__(
        self,
        results: Sequence[YearResult],
        region_area_km2: float,
        region_code: str = 'UAE'
    ):
        if not results:
            raise ValueError("No year results to report")

        self.results: List[YearResult] = sorted(results, key=lambda r: r.year)
        self.region_area_km2 = region_area_km2
        self.region_code = region_code

    @property
    def base(self) -> YearResult:
        return self.results[0]

    @property
    def final(self) -> YearResult:
        return self.results[-1]

    @property
    def years(self) -> List[int]:
        return [r.year for r in self.results]

    def rows(self) -> List[ReportRow]:
        base_area = self.base.urban_area_km2
        return [
            ReportRow(
                year=r.year,
                urban_area_km2=r.urban_area_km2,
                percent_of_region=_percent(r.urban_area_km2, self.region_area_km2) or 0.0,
                growth_km2=r.urban_area_km2 - base_area,
                growth_pct=_percent(r.urban_area_km2 - base_area, base_area)
            )
            for r in self.results
        ]

    def summary(self) -> GrowthSummary:
        """Totals and averages over the elapsed year span."""
        base, final = self.base, self.final
        total_growth = final.urban_area_km2 - base.urban_area_km2
        total_pct = _percent(total_growth, base.urban_area_km2)
        span = final.year - base.year

        return GrowthSummary(
            base_year=base.year,
            final_year=final.year,
            base_area_km2=base.urban_area_km2,
            final_area_km2=final.urban_area_km2,
            total_growth_km2=total_growth,
            total_growth_pct=total_pct,
            average_annual_growth_km2=total_growth / span if span else None,
            average_annual_growth_rate_pct=total_pct / span if span and total_pct is not None else None
        )

    def format_table(self) -> str:
        base_year, final_year = self.base.year, self.final.year
        lines = [
            "=" * 55,
            f"URBAN GROWTH ANALYSIS - {self.region_code} ({base_year}-{final_year})",
            "=" * 55,
            f"{self.region_code} Total Area: {self.region_area_km2:.2f} km²",
            "",
            f"Year | Urban Area (km²) | % of {self.region_code} | Growth from {base_year}",
            "-" * 55,
        ]

        for row in self.rows():
            year_str = str(row.year).ljust(4)
            area_str = f"{row.urban_area_km2:.2f}".rjust(12)
            percent_str = f"{row.percent_of_region:.2f}%".rjust(9)
            growth_str = _fmt(row.growth_pct, 1, '%').rjust(6)
            lines.append(f"{year_str} | {area_str} | {percent_str} | {growth_str}")

        return "\n".join(lines)

    def format_summary(self) -> str:
        s = self.summary()
        lines = [
            "=" * 35,
            f"SUMMARY ({s.base_year}-{s.final_year})",
            "=" * 35,
            f"Urban area in {s.base_year}: {s.base_area_km2:.2f} km²",
            f"Urban area in {s.final_year}: {s.final_area_km2:.2f} km²",
            f"Total urban growth: {s.total_growth_km2:.2f} km²",
            f"Percentage growth: {_fmt(s.total_growth_pct, 1, '%')}",
            f"Average annual growth: {_fmt(s.average_annual_growth_km2, 2, ' km²/year')}",
            f"Average annual growth rate: {_fmt(s.average_annual_growth_rate_pct, 2, '%/year')}",
        ]
        return "\n".join(lines)

    def format(self) -> str:
        return self.format_table() + "\n\n" + self.format_summary()

    def to_dataframe(self) -> pd.DataFrame:
        """Per-year records with the export column names."""
        base_year = self.base.year
        return pd.DataFrame([
            {
                'Year': row.year,
                'Urban_Area_km2': row.urban_area_km2,
                f'Percentage_of_{self.region_code}': row.percent_of_region,
                f'Growth_from_{base_year}_km2': row.growth_km2,
                f'Growth_from_{base_year}_pct': row.growth_pct,
            }
            for row in self.rows()
        ])
