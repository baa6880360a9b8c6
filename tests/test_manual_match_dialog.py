from PyQt6.QtCore import QObject, pyqtSignal

from mediashelf.database.models import CatalogEntry, MediaType
from mediashelf.ui.dialogs.manual_match_dialog import ManualMatchDialog


class FakeSync(QObject):
    """Records searches; results are emitted by the test."""

    search_finished = pyqtSignal(int, list)

    def __init__(self):
        super().__init__()
        self.searches = []

    def search(self, query, year=None, media_type=MediaType.FILM):
        self.searches.append((query, year, media_type))
        return len(self.searches)


def make_dialog(sync, entry=None):
    entry = entry or CatalogEntry(id=1, file_path='/tv/Great Show/Season 1',
                                  title='Great Show - Season 1',
                                  media_type=MediaType.TV_SEASON, season_number=1)
    return ManualMatchDialog(None, sync, entry)


def test_type_change_after_search_keeps_searched_type():
    sync = FakeSync()
    dialog = make_dialog(sync)
    dialog.search()
    sync.search_finished.emit(1, [{'id': 1396, 'title': 'Great Show', 'year': 2008}])

    dialog.type_combo.setCurrentIndex(0)
    dialog.results_table.setCurrentCell(0, 0)
    dialog.accept_match()

    assert sync.searches[0][2] == MediaType.TV_SEASON
    assert dialog.selected_match['id'] == 1396
    assert dialog.selected_media_type() == MediaType.TV_SEASON


def test_new_search_uses_current_type():
    sync = FakeSync()
    dialog = make_dialog(sync)
    dialog.search()
    dialog.type_combo.setCurrentIndex(0)
    dialog.search()

    assert [media_type for _q, _y, media_type in sync.searches] == [
        MediaType.TV_SEASON, MediaType.FILM]
    assert dialog.selected_media_type() == MediaType.FILM
    dialog.reject()


def test_stale_search_results_are_ignored():
    sync = FakeSync()
    dialog = make_dialog(sync)
    dialog.search()
    dialog.search()

    sync.search_finished.emit(1, [{'id': 1, 'title': 'Old'}])
    assert dialog.results_table.rowCount() == 0

    sync.search_finished.emit(2, [{'id': 2, 'title': 'New'}])
    assert dialog.results_table.rowCount() == 1
    dialog.reject()
