"""Sample VIS XML payloads shared by the sync, job and API tests."""

from __future__ import annotations

TOURNAMENT_LIST = """\ufeff<?xml version="1.0" encoding="utf-8"?>
<Tournaments>
  <Tournament>
    <No>101</No>
    <Code>MWOR2026</Code>
    <Name>FIVB World Championship</Name>
    <StartDate>2026-07-14</StartDate>
    <EndDate>2026-07-20</EndDate>
    <Status>Running</Status>
    <Location>Rome</Location>
  </Tournament>
  <Tournament No="102" Code="CEV-EU" Name="CEV European Championship"
      StartDate="01/08/2026" EndDate="05/08/2026" Status="scheduled" />
  <Tournament><No>abc</No><Code>X</Code></Tournament>
  <Tournament><Code>MISSING</Code></Tournament>
</Tournaments>
"""

MATCH_LIST = """<?xml version="1.0" encoding="utf-8"?>
<BeachMatches>
  <BeachMatch No="5001" NoInTournament="1" TeamAName="Smith / Jones" TeamBName="Lee / Park"
      LocalDate="2026-07-15" LocalTime="10:00" Court="Centre" Status="Live"
      MatchPointsA="1" MatchPointsB="0" PointsTeamASet1="21" PointsTeamBSet1="18" />
  <BeachMatch>
    <No>5002</No>
    <TeamAName>A &amp; B</TeamAName>
    <TeamBName><![CDATA[C <D>]]></TeamBName>
    <LocalDate>15/07/2026</LocalDate>
    <LocalTime value="14:30" />
    <Status>scheduled</Status>
  </BeachMatch>
  <BeachMatch No="5003" />
</BeachMatches>
"""


def match_list(*matches: tuple[str, str]) -> str:
    """Render a minimal match list from ``(No, Status)`` pairs."""

    elements = "".join(
        f'<BeachMatch No="{no}" TeamAName="Team A" TeamBName="Team B" '
        f'LocalDate="2026-07-15" LocalTime="10:00" Status="{status}" />'
        for no, status in matches
    )
    return f"<BeachMatches>{elements}</BeachMatches>"
