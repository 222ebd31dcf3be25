"""
Swiss standings and pairings.

Pure functions over plain dicts: no database access happens here, so the
match engine can feed them freshly fetched rows and tests can feed them
hand-built ones.
"""
import math
from typing import Dict, List, Optional

# Floor applied to every opponent's match-win rate
MIN_WIN_RATE = 0.33
# A bye counts as a 2-0 match win
BYE_GAME_WINS = 2


def calculate_round_count(player_count: int) -> int:
    """Number of Swiss rounds needed for player_count players."""
    if player_count < 2:
        return 0
    return math.ceil(math.log2(player_count))


def _group_matches(matches: List[dict]) -> Dict[int, dict]:
    grouped = {}
    for row in matches:
        group = grouped.setdefault(row['matchId'], {
            'winnerTeamId': row.get('winnerTeamId'),
            'isBye': row.get('isBye', False),
            'players': [],
        })
        group['players'].append(row)
    return grouped


def _win_rate(stats: Optional[dict]) -> float:
    if stats is None:
        return MIN_WIN_RATE
    decided = stats['matchWins'] + stats['matchLosses']
    if decided == 0:
        return MIN_WIN_RATE
    return max(MIN_WIN_RATE, stats['matchWins'] / decided)


def calculate_standings(participants: List[dict], matches: List[dict]) -> List[dict]:
    """
    Rank participants by match wins, then OMW, then OOMW.

    participants: [{'userId', 'username', 'tag'}]
    matches: completed match rows, one per (match, player):
        [{'matchId', 'winnerTeamId', 'isBye', 'playerId', 'teamId', 'gamesWon'}]

    GW is reported but never used for ordering. Players with identical
    keys keep their input order.
    """
    stats_by_player: Dict[int, dict] = {}
    for p in participants:
        stats_by_player[p['userId']] = {
            'userId': p['userId'],
            'username': p.get('username'),
            'tag': p.get('tag'),
            'matchWins': 0,
            'matchLosses': 0,
            'gameWins': 0,
            'gameLosses': 0,
            'opponents': [],
        }

    for match in _group_matches(matches).values():
        if match['isBye']:
            stats = stats_by_player.get(match['players'][0]['playerId'])
            if stats:
                stats['matchWins'] += 1
                stats['gameWins'] += BYE_GAME_WINS
            continue

        team1 = next((p for p in match['players'] if p['teamId'] == 1), None)
        team2 = next((p for p in match['players'] if p['teamId'] == 2), None)
        if team1 is None or team2 is None:
            continue

        stats1 = stats_by_player.get(team1['playerId'])
        stats2 = stats_by_player.get(team2['playerId'])
        if stats1 is None or stats2 is None:
            continue

        stats1['opponents'].append(team2['playerId'])
        stats2['opponents'].append(team1['playerId'])

        games1 = team1.get('gamesWon') or 0
        games2 = team2.get('gamesWon') or 0
        stats1['gameWins'] += games1
        stats1['gameLosses'] += games2
        stats2['gameWins'] += games2
        stats2['gameLosses'] += games1

        if match['winnerTeamId'] == 1:
            stats1['matchWins'] += 1
            stats2['matchLosses'] += 1
        elif match['winnerTeamId'] == 2:
            stats2['matchWins'] += 1
            stats1['matchLosses'] += 1

    # OMW per player, computed once from the opponent adjacency lists
    omw_by_player = {}
    for player_id, stats in stats_by_player.items():
        if not stats['opponents']:
            omw_by_player[player_id] = MIN_WIN_RATE
            continue
        rates = [_win_rate(stats_by_player.get(opp_id)) for opp_id in stats['opponents']]
        omw_by_player[player_id] = sum(rates) / len(rates)

    standings = []
    for player_id, stats in stats_by_player.items():
        oomw = MIN_WIN_RATE
        if stats['opponents']:
            opponent_omws = []
            for opp_id in stats['opponents']:
                opp = stats_by_player.get(opp_id)
                if opp is None or not opp['opponents']:
                    opponent_omws.append(MIN_WIN_RATE)
                    continue
                opp_rates = [_win_rate(stats_by_player.get(opp_opp_id)) for opp_opp_id in opp['opponents']]
                opponent_omws.append(sum(opp_rates) / len(opp_rates))
            oomw = sum(opponent_omws) / len(opponent_omws)

        total_games = stats['gameWins'] + stats['gameLosses']
        standings.append({
            **stats,
            'omw': omw_by_player[player_id],
            'gw': stats['gameWins'] / total_games if total_games > 0 else 0.0,
            'oomw': oomw,
        })

    standings.sort(key=lambda s: (-s['matchWins'], -s['omw'], -s['oomw']))
    return standings


def generate_pairings(standings: List[dict]) -> List[dict]:
    """
    Greedy Swiss pairing in standings order.

    Each player takes the first remaining player they have not met yet,
    or the next remaining player when everyone left is a rematch. An odd
    player out gets a bye.
    """
    pairings = []
    unpaired = list(standings)

    while len(unpaired) > 1:
        player1 = unpaired.pop(0)
        opponents = player1.get('opponents') or []

        partner_index = 0
        for i, candidate in enumerate(unpaired):
            if candidate['userId'] not in opponents:
                partner_index = i
                break

        player2 = unpaired.pop(partner_index)
        pairings.append({
            'player1': player1['userId'],
            'player2': player2['userId'],
            'isBye': False,
        })

    if len(unpaired) == 1:
        pairings.append({
            'player1': unpaired[0]['userId'],
            'player2': None,
            'isBye': True,
        })

    return pairings


def standings_view(standings: List[dict]) -> List[dict]:
    """Ranked standings as shown to players, percentages to 2 places."""
    return [
        {
            'rank': index + 1,
            'userId': s['userId'],
            'username': s['username'],
            'tag': s['tag'],
            'matchWins': s['matchWins'],
            'matchLosses': s['matchLosses'],
            'omw': round(s['omw'], 2),
            'gw': round(s['gw'], 2),
            'oomw': round(s['oomw'], 2),
        }
        for index, s in enumerate(standings)
    ]
