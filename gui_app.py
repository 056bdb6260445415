# gui_app.py - Hydrogen orbital particle-cloud viewer
"""
Interactive viewer for sampled hydrogen orbitals.

- 3D point cloud (VTK) with trackball orbit / zoom camera and optional auto-orbit
- Radial profile (pyqtgraph): sampled histogram vs analytic r²R²
- Quantum numbers are applied through SimulationState.replace_async(), so the
  previous cloud keeps rendering while a new density table is built.
"""
from __future__ import annotations

import sys
from concurrent.futures import Future
from typing import List, Optional, Tuple

import logging

import numpy as np
from PySide6.QtCore import Qt, QTimer
from PySide6.QtWidgets import (
    QApplication, QMainWindow, QWidget, QVBoxLayout, QFormLayout, QGroupBox,
    QPushButton, QLabel, QSpinBox, QComboBox, QCheckBox, QSplitter, QMessageBox,
)
import pyqtgraph as pg

from vtkmodules.qt.QVTKRenderWindowInteractor import QVTKRenderWindowInteractor
from vtkmodules.vtkRenderingCore import vtkRenderer, vtkActor, vtkPolyDataMapper
from vtkmodules.vtkCommonCore import vtkPoints, vtkLookupTable
from vtkmodules.vtkCommonDataModel import vtkPolyData
from vtkmodules.vtkFiltersGeneral import vtkVertexGlyphFilter
from vtkmodules.util import numpy_support as vtk_np
from vtkmodules.vtkInteractionStyle import vtkInteractorStyleTrackballCamera
from vtkmodules.vtkRenderingOpenGL2 import *  # noqa: F401,F403

import physics
from density_tables import DomainComputationFailure
from model import ParticleCloudFeed, SimulationState, Snapshot, radial_histogram
from physics import QuantumState, ValidationError
from sampling import SampleBatch, Sampler

logger = logging.getLogger(__name__)


def _make_lookup_table(weight_mode: str) -> vtkLookupTable:
    lut = vtkLookupTable()
    lut.SetNumberOfTableValues(256)
    if weight_mode == "sign":
        # negative lobes orange, positive lobes cyan
        lut.SetTableRange(-1.0, 1.0)
        for i in range(256):
            if i < 128:
                lut.SetTableValue(i, 1.0, 0.55, 0.1, 0.9)
            else:
                lut.SetTableValue(i, 0.1, 0.8, 1.0, 0.9)
    else:
        lut.SetTableRange(0.0, 1.0)
        lut.SetHueRange(0.62, 0.0)
        lut.SetSaturationRange(0.9, 0.6)
        lut.SetValueRange(0.7, 1.0)
        lut.Build()
    return lut


class Orbital3DView(QWidget):
    """VTK point cloud of one SampleBatch."""

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)

        self.vtk_widget = QVTKRenderWindowInteractor(self)
        layout.addWidget(self.vtk_widget)

        self.renderer = vtkRenderer()
        self.renderer.SetBackground(0.05, 0.05, 0.08)
        self.vtk_widget.GetRenderWindow().AddRenderer(self.renderer)

        style = vtkInteractorStyleTrackballCamera()
        style.SetMotionFactor(10.0)
        self.vtk_widget.GetRenderWindow().GetInteractor().SetInteractorStyle(style)

        self._interactor_initialized = False
        self._camera_initialized = False
        self._poly = vtkPolyData()
        self._glyph = vtkVertexGlyphFilter()
        self._glyph.SetInputData(self._poly)
        self._mapper = vtkPolyDataMapper()
        self._mapper.SetInputConnection(self._glyph.GetOutputPort())
        self._actor = vtkActor()
        self._actor.SetMapper(self._mapper)
        self._actor.GetProperty().SetPointSize(2.0)
        self._actor_added = False
        self._weight_mode = ""

    def showEvent(self, event) -> None:
        super().showEvent(event)
        if not self._interactor_initialized:
            interactor = self.vtk_widget.GetRenderWindow().GetInteractor()
            if interactor is not None:
                interactor.Initialize()
            self._interactor_initialized = True

    def update_cloud(self, batch: SampleBatch, weight_mode: str, *, reset_camera: bool = False) -> None:
        pts = np.ascontiguousarray(batch.points, dtype=np.float32)
        vtk_pts = vtkPoints()
        vtk_pts.SetData(vtk_np.numpy_to_vtk(pts, deep=True))
        self._poly.SetPoints(vtk_pts)

        scalars = vtk_np.numpy_to_vtk(np.ascontiguousarray(batch.weights, dtype=np.float32), deep=True)
        scalars.SetName("weight")
        self._poly.GetPointData().SetScalars(scalars)
        self._poly.Modified()

        if weight_mode != self._weight_mode:
            lut = _make_lookup_table(weight_mode)
            self._mapper.SetLookupTable(lut)
            self._mapper.SetScalarRange(*lut.GetTableRange())
            self._weight_mode = weight_mode
        if weight_mode == "none":
            self._mapper.ScalarVisibilityOff()
            self._actor.GetProperty().SetColor(0.3, 0.85, 1.0)
        else:
            self._mapper.ScalarVisibilityOn()

        if not self._actor_added:
            self.renderer.AddActor(self._actor)
            self._actor_added = True
        if reset_camera or not self._camera_initialized:
            self.renderer.ResetCamera()
            self._camera_initialized = True
        self.vtk_widget.GetRenderWindow().Render()

    def orbit(self, degrees: float) -> None:
        self.renderer.GetActiveCamera().Azimuth(float(degrees))
        self.vtk_widget.GetRenderWindow().Render()

    def reset_camera(self) -> None:
        self.renderer.ResetCamera()
        self._camera_initialized = True
        self.vtk_widget.GetRenderWindow().Render()


class RadialProfileView(pg.PlotWidget):
    def __init__(self, parent=None):
        super().__init__(parent)
        self.setLabel("bottom", "r (a₀)")
        self.setLabel("left", "P(r)")
        self.addLegend()
        self._hist = self.plot([0.0, 1.0], [0.0], stepMode="center", pen=pg.mkPen("c", width=1), name="sampled")
        self._curve = self.plot([], [], pen=pg.mkPen("y", width=2), name="r²R²")

    def update_from_batch(self, batch: SampleBatch, r_max: float) -> None:
        centers, hist, analytic = radial_histogram(batch, r_max, n_bins=160)
        width = centers[1] - centers[0]
        edges = np.append(centers - 0.5 * width, centers[-1] + 0.5 * width)
        self._hist.setData(edges, hist)
        self._curve.setData(centers, analytic)


class MainWindow(QMainWindow):
    def __init__(
        self,
        simulation: SimulationState,
        *,
        samples: int = 50_000,
        weight_mode: str = "density",
        workers: int = 1,
        seed: Optional[int] = None,
    ) -> None:
        super().__init__()
        self.setWindowTitle("Hydrogen Orbital Viewer")
        self.resize(1300, 850)

        self.simulation = simulation
        self.feed = ParticleCloudFeed(
            simulation,
            Sampler(weight_mode=weight_mode, workers=workers),  # type: ignore[arg-type]
            batch_size=samples,
            rng=seed,
        )
        self._pending: List[Tuple[QuantumState, Future]] = []
        self._reset_camera_next = True

        self.view3d = Orbital3DView(self)
        self.view_radial = RadialProfileView(self)

        self._build_ui()

        self.timer = QTimer(self)
        self.timer.setInterval(30)
        self.timer.timeout.connect(self._on_tick)
        self.timer.start()

    def _build_ui(self) -> None:
        splitter_v = QSplitter(Qt.Vertical)
        splitter_v.addWidget(self.view3d)
        splitter_v.addWidget(self.view_radial)
        splitter_v.setStretchFactor(0, 3)
        splitter_v.setStretchFactor(1, 1)

        controls = QWidget()
        v = QVBoxLayout(controls)

        g_qn = QGroupBox("Quantum numbers")
        f_qn = QFormLayout(g_qn)
        state = self.simulation.snapshot().state if self.simulation.has_state else QuantumState(1, 0, 0)
        self.spin_n = QSpinBox(); self.spin_n.setRange(1, 40); self.spin_n.setValue(state.n)
        self.spin_l = QSpinBox(); self.spin_l.setRange(0, 39); self.spin_l.setValue(state.l)
        self.spin_m = QSpinBox(); self.spin_m.setRange(-39, 39); self.spin_m.setValue(state.m)
        f_qn.addRow("n", self.spin_n)
        f_qn.addRow("l", self.spin_l)
        f_qn.addRow("m", self.spin_m)
        self.spin_n.valueChanged.connect(self._sync_quantum_ranges)
        self.spin_l.valueChanged.connect(self._sync_quantum_ranges)
        self._sync_quantum_ranges()
        btn_apply = QPushButton("Apply")
        btn_apply.clicked.connect(self._on_apply)
        f_qn.addRow(btn_apply)
        v.addWidget(g_qn)

        g_cloud = QGroupBox("Cloud")
        f_cloud = QFormLayout(g_cloud)
        self.spin_samples = QSpinBox()
        self.spin_samples.setRange(1_000, 2_000_000)
        self.spin_samples.setSingleStep(10_000)
        self.spin_samples.setValue(self.feed.batch_size)
        f_cloud.addRow("Samples", self.spin_samples)

        self.combo_weight = QComboBox()
        self.combo_weight.addItems(["density", "sign", "none"])
        self.combo_weight.setCurrentText(self.feed.sampler.weight_mode)
        f_cloud.addRow("Color", self.combo_weight)

        btn_regen = QPushButton("Resample")
        btn_regen.clicked.connect(self._on_resample)
        f_cloud.addRow(btn_regen)

        self.check_animate = QCheckBox("Resample every frame")
        f_cloud.addRow(self.check_animate)
        self.check_orbit = QCheckBox("Auto-orbit camera")
        f_cloud.addRow(self.check_orbit)

        btn_cam = QPushButton("Reset camera")
        btn_cam.clicked.connect(self.view3d.reset_camera)
        f_cloud.addRow(btn_cam)
        v.addWidget(g_cloud)

        self.lbl_info = QLabel("--")
        self.lbl_info.setWordWrap(True)
        v.addWidget(self.lbl_info)
        v.addStretch(1)

        splitter = QSplitter(Qt.Horizontal)
        splitter.addWidget(splitter_v)
        splitter.addWidget(controls)
        splitter.setStretchFactor(0, 4)
        splitter.setStretchFactor(1, 1)
        self.setCentralWidget(splitter)

    # -----------------------------
    # Actions
    # -----------------------------

    def _sync_quantum_ranges(self) -> None:
        self.spin_l.setMaximum(self.spin_n.value() - 1)
        l = self.spin_l.value()
        self.spin_m.setRange(-l, l)

    def _on_apply(self) -> None:
        try:
            state = physics.validate_and_construct(self.spin_n.value(), self.spin_l.value(), self.spin_m.value())
        except ValidationError as e:
            QMessageBox.warning(self, "Invalid quantum numbers", str(e))
            return
        self.lbl_info.setText(f"building {state.label} ...")
        self._reset_camera_next = True
        self._pending.append((state, self.simulation.replace_async(state)))

    def _apply_cloud_settings(self) -> None:
        self.feed.set_batch_size(self.spin_samples.value())
        mode = self.combo_weight.currentText()
        if mode != self.feed.sampler.weight_mode:
            self.feed.sampler = Sampler(weight_mode=mode, workers=self.feed.sampler.workers)  # type: ignore[arg-type]

    def _on_resample(self) -> None:
        self._apply_cloud_settings()
        self._refresh(force=True)

    def _check_pending(self) -> None:
        done, waiting = [], []
        for item in self._pending:
            (done if item[1].done() else waiting).append(item)
        if not done:
            return
        self._pending = waiting
        for state, fut in done:
            try:
                snap: Snapshot = fut.result()
            except DomainComputationFailure as e:
                QMessageBox.critical(self, "Density table failed", f"{state.label}: {e}")
                self.lbl_info.setText(self.feed.describe())
                continue
            if snap.state != state:
                logger.info(f"Request for {state.label} superseded by {snap.state.label}")
            else:
                logger.info(f"GUI picked up generation {snap.generation}")

    def _on_tick(self) -> None:
        self._check_pending()
        if self.check_animate.isChecked():
            self._apply_cloud_settings()
        self._refresh(force=self.check_animate.isChecked())
        if self.check_orbit.isChecked():
            self.view3d.orbit(0.6)

    def _refresh(self, force: bool = False) -> None:
        batch = self.feed.poll(force=force)
        if batch is None:
            return
        _, table = self.simulation.current()
        self.view3d.update_cloud(batch, self.feed.sampler.weight_mode, reset_camera=self._reset_camera_next)
        self._reset_camera_next = False
        self.view_radial.update_from_batch(batch, table.r_max)
        self.lbl_info.setText(f"{self.feed.describe()}\n{len(batch)} samples")


def main(
    initial: QuantumState,
    samples: int = 50_000,
    weight_mode: str = "density",
    workers: int = 1,
    seed: Optional[int] = None,
    simulation: Optional[SimulationState] = None,
) -> int:
    if simulation is None:
        try:
            simulation = SimulationState(initial=initial)
        except DomainComputationFailure as e:
            logger.error(f"Could not build density table: {e}")
            return 1
    app = QApplication.instance() or QApplication(sys.argv)
    pg.setConfigOptions(antialias=True)
    win = MainWindow(simulation, samples=samples, weight_mode=weight_mode, workers=workers, seed=seed)
    win.show()
    return int(app.exec())
