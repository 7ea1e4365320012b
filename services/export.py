"""
Standings Export

Generate a PDF standings sheet for a finished session.
Also supports CSV export for record keeping.
"""

import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from reportlab.platypus.doctemplate import LayoutError

from config import APP_NAME, PATHS


logger = logging.getLogger(__name__)


class StandingsExporter:
    """
    Export session results.

    ``results`` is the dict returned by ``GameSession.get_results()``.

    Usage:
        exporter = StandingsExporter()
        exporter.export_csv(session.get_results(), "results.csv")
        exporter.export_pdf(session.get_results(), "results.pdf")
    """

    COLUMNS = ["Rank", "Team ID", "Team", "Score", "Lives", "Eliminated"]

    def __init__(self):
        self.styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self) -> None:
        """Set up custom paragraph styles."""
        self.styles.add(ParagraphStyle(
            name='ReportTitle',
            parent=self.styles['Heading1'],
            fontSize=24,
            alignment=TA_CENTER,
            spaceAfter=20,
        ))

        self.styles.add(ParagraphStyle(
            name='ReportSubtitle',
            parent=self.styles['Normal'],
            fontSize=14,
            alignment=TA_CENTER,
            spaceAfter=10,
        ))

        self.styles.add(ParagraphStyle(
            name='SectionHeader',
            parent=self.styles['Heading2'],
            fontSize=14,
            spaceBefore=15,
            spaceAfter=10,
        ))

    def _rows(self, results: dict) -> list[list]:
        rows = []
        for row in results.get("rankings", []):
            rows.append([
                row.get("rank", ""),
                row.get("team_id", ""),
                row.get("display_name", ""),
                row.get("score", 0),
                row.get("lives", 0),
                "yes" if row.get("eliminated") else "no",
            ])
        return rows

    @staticmethod
    def _winner_row(results: dict) -> list:
        winners = results.get("winner_ids", [])
        return ["Winner" if len(winners) == 1 else "Winners", *winners]

    def export_pdf(self, results: dict, filepath: Optional[str] = None) -> bool:
        """
        Export session results as a PDF standings sheet.

        Args:
            results: Dict with "session_name", "rankings" and "winner_ids"
            filepath: Output file path (default: timestamped file in the exports dir)

        Returns:
            True if export successful, False otherwise
        """
        path = (Path(filepath) if filepath
                else self.default_path(results.get("session_name", "session"), ".pdf"))
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            doc = SimpleDocTemplate(
                str(path),
                pagesize=A4,
                rightMargin=1*cm,
                leftMargin=1*cm,
                topMargin=1*cm,
                bottomMargin=1*cm,
            )

            elements = []

            # Title
            elements.append(Paragraph(f"{APP_NAME} Results", self.styles['ReportTitle']))
            elements.append(Paragraph(escape(results.get("session_name", "")), self.styles['ReportSubtitle']))
            elements.append(Spacer(1, 0.5*cm))

            # Session info table
            session_info = [
                ["Date:", results.get("date", datetime.now().strftime("%Y-%m-%d %H:%M"))],
                ["Questions Asked:", str(results.get("questions_asked", ""))],
            ]
            info_table = Table(session_info, colWidths=[4*cm, 10*cm])
            info_table.setStyle(TableStyle([
                ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
                ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
                ('BOTTOMPADDING', (0, 0), (-1, -1), 5),
            ]))
            elements.append(info_table)

            # Standings
            elements.append(Paragraph("Final Standings", self.styles['SectionHeader']))
            standings = [self.COLUMNS] + [[str(cell) for cell in row] for row in self._rows(results)]
            standings_table = Table(standings, colWidths=[1.5*cm, 3*cm, 6*cm, 2.5*cm, 2*cm, 3*cm])
            standings_table.setStyle(TableStyle([
                ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#2196F3')),
                ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
                ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
                ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
                ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
                ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
            ]))
            elements.append(standings_table)

            elements.append(Spacer(1, 0.5*cm))
            label, *winners = self._winner_row(results)
            elements.append(Paragraph(f"<b>{label}:</b> {escape(', '.join(winners)) or '-'}",
                                      self.styles['Normal']))

            # Footer
            elements.append(Spacer(1, 1*cm))
            elements.append(Paragraph(
                f"Generated by {APP_NAME}",
                ParagraphStyle(
                    name='Footer',
                    fontSize=8,
                    alignment=TA_CENTER,
                    textColor=colors.grey,
                )
            ))

            doc.build(elements)

        except (OSError, LayoutError) as e:
            logger.error("PDF export error: %s", e)
            return False

        logger.info("Results exported to %s", path)
        return True

    def export_csv(self, results: dict, filepath: Optional[str] = None) -> bool:
        """
        Export session results as CSV.

        Args:
            results: Dict with "session_name", "rankings" and "winner_ids"
            filepath: Output file path (default: timestamped file in the exports dir)

        Returns:
            True if export successful, False otherwise
        """
        path = Path(filepath) if filepath else self.default_path(results.get("session_name", "session"))
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w', newline='', encoding='utf-8') as f:
                writer = csv.writer(f)

                # Header
                writer.writerow([f"{APP_NAME} Results Export"])
                writer.writerow(["Session", results.get("session_name", "")])
                writer.writerow(["Date", results.get("date", datetime.now().strftime("%Y-%m-%d %H:%M"))])
                writer.writerow(["Questions Asked", results.get("questions_asked", "")])
                writer.writerow([])

                # Standings
                writer.writerow(["Final Standings"])
                writer.writerow(self.COLUMNS)
                writer.writerows(self._rows(results))
                writer.writerow([])

                writer.writerow(self._winner_row(results))

        except OSError as e:
            logger.error("CSV export error: %s", e)
            return False

        logger.info("Results exported to %s", path)
        return True

    @staticmethod
    def default_path(session_name: str, suffix: str = ".csv") -> Path:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        safe_name = "".join(c if c.isalnum() else "_" for c in session_name).strip("_") or "session"
        return PATHS.exports / f"{safe_name}-{stamp}{suffix}"
